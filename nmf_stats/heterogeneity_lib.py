import numpy as np

from nmf_stats.advanced_stats_lib import chi_square_pvalue


def calculate_heterogeneity(effect_sizes: list[float], variances: list[float]) -> dict:
    """
    Calculate heterogeneity statistics across strata (Cochran's Q and I^2).

    Args:
        effect_sizes: Per-stratum effect estimates (log hazard ratios)
        variances: Per-stratum variances (SE^2); non-positive entries are dropped

    Returns:
        dict containing Q, df, p_value, I_squared, tau_squared and the pooled
        inverse-variance estimate
    """
    y = np.asarray(effect_sizes, dtype=float)
    v = np.asarray(variances, dtype=float)
    keep = np.isfinite(y) & np.isfinite(v) & (v > 0)
    y, v = y[keep], v[keep]

    k = len(y)
    if k < 2:
        pooled = float(y[0]) if k == 1 else float("nan")
        return {"Q": 0.0, "df": 0, "p_value": 1.0, "I_squared": 0.0, "tau_squared": 0.0, "pooled": pooled}

    w = 1 / v  # Inverse variance weights

    w_sum = np.sum(w)
    weighted_mean = np.sum(w * y) / w_sum

    # Cochran's Q
    Q = float(np.sum(w * (y - weighted_mean) ** 2))
    df = k - 1

    p_value = chi_square_pvalue(Q, df)

    # I^2 = max(0, (Q - df) / Q) * 100
    if Q <= df:
        I2 = 0.0
    else:
        I2 = 100 * (Q - df) / Q

    # Tau-squared (DerSimonian-Laird estimator)
    c_const = w_sum - (np.sum(w**2) / w_sum)
    if c_const > 0:
        tau2 = max(0.0, (Q - df) / c_const)
    else:
        tau2 = 0.0

    return {
        "Q": Q,
        "df": df,
        "p_value": float(p_value),
        "I_squared": float(I2),
        "tau_squared": float(tau2),
        "pooled": float(weighted_mean),
    }
