"""
Advanced Statistics Helpers for the NMF subtype core.

This module provides utility functions for:
1. Multiple Comparison Corrections (MCC)
2. Chi-square / normal reference distributions used by the Wald and log-rank tests
3. Greenwood variance behind Kaplan-Meier confidence bands
"""
from __future__ import annotations

from typing import List, Union

import numpy as np
import pandas as pd
import statsmodels.stats.multitest as smt
from scipy import special
from scipy import stats as scipy_stats

from logger import get_logger

logger = get_logger(__name__)

# --- Multiple Comparison Corrections (MCC) ---

SUPPORTED_MCC_METHODS = ("bonferroni", "holm", "fdr_bh")


def apply_mcc(
    p_values: Union[List[float], pd.Series, np.ndarray],
    method: str = "fdr_bh",
    alpha: float = 0.05,
) -> pd.Series:
    """
    Apply Multiple Comparison Correction to a list of p-values.

    Args:
        p_values (Union[list, pd.Series, np.ndarray]): Raw p-values.
        method (str): 'bonferroni' (p * n_tests capped at 1), 'holm', or
                      'fdr_bh' (step-up Benjamini-Hochberg). Defaults to 'fdr_bh'.
        alpha (float): Significance level passed through to statsmodels.

    Returns:
        pd.Series: Adjusted p-values, NaN where the input was not finite.
    """
    if method not in SUPPORTED_MCC_METHODS:
        raise ValueError(f"Unsupported MCC method '{method}'. Use one of {SUPPORTED_MCC_METHODS}")
    if p_values is None or len(p_values) == 0:
        return pd.Series(dtype=float)
    if not (0.0 < float(alpha) <= 1.0):
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")

    index = p_values.index if isinstance(p_values, pd.Series) else None
    p_vals_arr = pd.to_numeric(pd.Series(list(p_values)), errors="coerce").to_numpy(dtype=float)
    # Robustness: Clip p-values to valid range [0, 1]
    p_vals_arr = np.clip(p_vals_arr, 0.0, 1.0)

    # multipletests cannot take NaN
    mask = np.isfinite(p_vals_arr)
    if not mask.any():
        return pd.Series(p_vals_arr, index=index)

    _, pvals_corrected, _, _ = smt.multipletests(p_vals_arr[mask], alpha=alpha, method=method)

    result = np.full_like(p_vals_arr, np.nan, dtype=float)
    result[mask] = np.clip(pvals_corrected, 0.0, 1.0)
    return pd.Series(result, index=index)


# --- Reference distributions ---

def chi_square_pvalue(chi_square: float, df: float) -> float:
    """
    Upper-tail chi-square probability, 1 - P(df/2, x/2), clipped to [0, 1].

    Non-positive statistics or degrees of freedom give 1.0.
    """
    if df <= 0 or not np.isfinite(chi_square) or chi_square <= 0:
        return 1.0
    p_value = float(special.gammaincc(df / 2.0, chi_square / 2.0))
    return min(1.0, max(0.0, p_value))


def two_sided_normal_pvalue(z_stat: float) -> float:
    """Two-sided Wald p-value 2 * (1 - Phi(|z|))."""
    if not np.isfinite(z_stat):
        return 0.0
    return float(min(1.0, 2.0 * scipy_stats.norm.sf(abs(z_stat))))


def greenwood_variance(
    survival: Union[List[float], np.ndarray],
    at_risk: Union[List[float], np.ndarray],
    events: Union[List[float], np.ndarray],
) -> np.ndarray:
    """
    Greenwood variance of Kaplan-Meier estimates at successive event times:
    V(S(t)) = S(t)^2 * sum_{t_i <= t} d_i / (n_i * (n_i - d_i)).

    Times without events add nothing to the sum. Once the curve has dropped to
    zero the variance is reported as 0.
    """
    s = np.asarray(survival, dtype=float)
    n = np.asarray(at_risk, dtype=float)
    d = np.asarray(events, dtype=float)
    if not (s.shape == n.shape == d.shape):
        raise ValueError("survival, at_risk and events must have the same length")

    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(d > 0, d / (n * (n - d)), 0.0)
        variance = s * s * np.cumsum(terms)
    return np.where(s > 0, variance, 0.0)
