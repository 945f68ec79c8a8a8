"""
Cox Proportional Hazards approximation from Kaplan-Meier curves.

Hazard ratios are estimated from pre-computed survival curves, not from
patient-level data. Under proportional hazards S2(t) = S1(t)^HR, so at any
shared time HR = log(S2(t)) / log(S1(t)). These are curve-based approximations;
exact partial-likelihood Cox results should come from a regression fit upstream.

Estimators:
- estimate_cox_ph: reference group (first curve) vs every other group
- stratified_cox_ph: per-stratum estimates pooled by inverse-variance
  weighting, with Cochran's Q heterogeneity
- multivariate_cox_ph: each covariate's effect estimated independently from
  blended split curves (not a joint fit), Bonferroni/FDR adjusted, plus an
  approximate concordance index
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from nmf_stats.advanced_stats_lib import apply_mcc, chi_square_pvalue, two_sided_normal_pvalue
from nmf_stats.heterogeneity_lib import calculate_heterogeneity
from nmf_stats.logrank_lib import reconstruct_event_data
from nmf_stats.survival_data import SurvivalCurve, SurvivalTimePoint, resolve_group_size

logger = get_logger(__name__)


# ==========================================
# RESULT TYPES
# ==========================================


@dataclass(frozen=True)
class HazardRatioEstimate:
    name: str
    hazard_ratio: float
    lower_ci: float
    upper_ci: float
    p_value: float
    coefficient: float
    se: float


@dataclass(frozen=True)
class WaldTest:
    chi_square: float
    df: int
    p_value: float


@dataclass(frozen=True)
class CoxResult:
    reference_group: Optional[str]
    groups: List[HazardRatioEstimate]
    wald_test: WaldTest
    stratified_by: Optional[str] = None

    def get(self, name: str) -> Optional[HazardRatioEstimate]:
        return next((g for g in self.groups if g.name == name), None)

    def to_frame(self) -> pd.DataFrame:
        """One row per comparison: name, HR, CI, p-value, log-HR and SE."""
        return pd.DataFrame(
            [asdict(g) for g in self.groups],
            columns=["name", "hazard_ratio", "lower_ci", "upper_ci", "p_value", "coefficient", "se"],
        )


@dataclass(frozen=True)
class StratumResult:
    stratum: str
    n_samples: int
    groups: List[HazardRatioEstimate]


@dataclass(frozen=True)
class StratifiedCoxResult(CoxResult):
    strata_results: List[StratumResult] = field(default_factory=list)
    heterogeneity: Dict[str, Dict[str, float]] = field(default_factory=dict)
    cochran_q: float = 0.0
    cochran_df: int = 0
    cochran_p_value: float = 1.0


@dataclass(frozen=True)
class CovariateEffect(HazardRatioEstimate):
    p_value_bonferroni: float = 1.0
    p_value_fdr: float = 1.0
    covariate_type: str = "categorical"
    comparison: str = ""
    n_reference: int = 0
    n_comparison: int = 0


@dataclass(frozen=True)
class MultivariateCoxResult:
    covariates: List[CovariateEffect]
    wald_test: WaldTest
    concordance: float
    log_likelihood: float
    null_log_likelihood: float
    aic: float
    n_samples: int
    skipped_covariates: List[str] = field(default_factory=list)

    def get(self, name: str) -> Optional[CovariateEffect]:
        return next((c for c in self.covariates if c.name == name), None)

    @property
    def covariate_names(self) -> List[str]:
        return [c.name for c in self.covariates]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(c) for c in self.covariates])


# ==========================================
# UNIVARIATE (PAIRWISE) ESTIMATOR
# ==========================================


def _hazard_ratio_estimate(
    name: str,
    reference: SurvivalCurve,
    comparison: SurvivalCurve,
    n_reference: int,
    n_comparison: int,
) -> Optional[HazardRatioEstimate]:
    """
    Geometric mean of per-time hazard ratios over the times both curves share.

    Only times where both survivals lie strictly inside the configured band
    (0.05, 0.99) count, and per-time ratios outside (0, hr_max) are dropped.
    SE is the empirical SD of log-HRs, floored at 0.5 * sqrt(1/n1 + 1/n2).
    """
    lower = CONFIG.get("analysis.hr_survival_lower", 0.05)
    upper = CONFIG.get("analysis.hr_survival_upper", 0.99)
    hr_max = CONFIG.get("analysis.hr_max", 100.0)
    z = CONFIG.get("analysis.ci_z", 1.96)

    comparison_times = set(comparison.times)
    log_hrs: List[float] = []
    for t in reference.times:
        if t <= 0 or t not in comparison_times:
            continue
        s1 = reference.point_at(t).survival
        s2 = comparison.point_at(t).survival
        if not (lower < s1 < upper and lower < s2 < upper):
            continue
        hr = np.log(s2) / np.log(s1)
        if 0 < hr < hr_max:
            log_hrs.append(float(np.log(hr)))

    if not log_hrs:
        logger.debug("No usable time points for %s vs %s", comparison.group, reference.group)
        return None

    log_hr_arr = np.asarray(log_hrs)
    mean_log_hr = float(log_hr_arr.mean())
    denominator = (len(log_hr_arr) - 1) or 1
    variance = float(np.sum((log_hr_arr - mean_log_hr) ** 2) / denominator)

    n_reference = max(int(n_reference), 1)
    n_comparison = max(int(n_comparison), 1)
    se = max(np.sqrt(variance), np.sqrt(1 / n_reference + 1 / n_comparison) * 0.5)

    return HazardRatioEstimate(
        name=name,
        hazard_ratio=float(np.exp(mean_log_hr)),
        lower_ci=float(np.exp(mean_log_hr - z * se)),
        upper_ci=float(np.exp(mean_log_hr + z * se)),
        p_value=two_sided_normal_pvalue(mean_log_hr / se),
        coefficient=mean_log_hr,
        se=float(se),
    )


def _wald_test(estimates: Sequence[HazardRatioEstimate]) -> WaldTest:
    chi_square = float(sum((e.coefficient / e.se) ** 2 for e in estimates))
    df = len(estimates)
    return WaldTest(chi_square=chi_square, df=df, p_value=chi_square_pvalue(chi_square, df))


def estimate_cox_ph(
    curves: Sequence[SurvivalCurve],
    group_counts: Optional[Mapping[str, int]] = None,
) -> Optional[CoxResult]:
    """
    Hazard ratio of every group against the first (reference) curve.

    Returns:
        CoxResult, or None for fewer than 2 curves or when no comparison has a
        usable time point.
    """
    if not curves or len(curves) < 2:
        return None

    reference = curves[0]
    n_reference = resolve_group_size(reference, group_counts)

    groups: List[HazardRatioEstimate] = []
    for curve in curves[1:]:
        estimate = _hazard_ratio_estimate(
            curve.group, reference, curve, n_reference, resolve_group_size(curve, group_counts)
        )
        if estimate is not None:
            groups.append(estimate)

    if not groups:
        logger.warning("Cox PH: no estimable comparison against reference '%s'", reference.group)
        return None

    return CoxResult(reference_group=reference.group, groups=groups, wald_test=_wald_test(groups))


# ==========================================
# STRATIFIED ESTIMATOR
# ==========================================


def _pooled_estimate(name: str, log_hrs: Sequence[float], variances: Sequence[float]) -> HazardRatioEstimate:
    z = CONFIG.get("analysis.ci_z", 1.96)
    weights = 1 / np.asarray(variances, dtype=float)
    total_weight = float(weights.sum())
    pooled = float(np.sum(np.asarray(log_hrs) * weights) / total_weight)
    se = float(np.sqrt(1 / total_weight))
    return HazardRatioEstimate(
        name=name,
        hazard_ratio=float(np.exp(pooled)),
        lower_ci=float(np.exp(pooled - z * se)),
        upper_ci=float(np.exp(pooled + z * se)),
        p_value=two_sided_normal_pvalue(pooled / se),
        coefficient=pooled,
        se=se,
    )


def stratified_cox_ph(
    curves: Sequence[SurvivalCurve],
    strata: Mapping[str, Any],
    sample_groups: Mapping[str, str],
    group_counts: Optional[Mapping[str, int]] = None,
    stratify_label: Optional[str] = None,
) -> Optional[StratifiedCoxResult]:
    """
    Cox PH estimate controlling for a confounder.

    Args:
        curves: One survival curve per group; the first is the reference.
        strata: sample id -> stratum value of the confounder.
        sample_groups: sample id -> group (subtype) label.
        group_counts: Optional overall group sizes, used when falling back.
        stratify_label: Name reported in `stratified_by` (default "<k> strata").

    Each stratum with at least `analysis.min_stratum_size` members re-weights the
    group curves by its own composition and reruns the pairwise estimator;
    strata missing the reference group are skipped. Per-group log-HRs are pooled
    by inverse-variance weighting and tested for heterogeneity with Cochran's Q
    (df = strata - 1 per group, summed for the overall test). With fewer than
    two strata this falls back to the unstratified estimate.
    """
    if not curves or len(curves) < 2:
        return None

    strata_levels = sorted({str(v) for v in strata.values()})

    if len(strata_levels) < 2:
        regular = estimate_cox_ph(curves, group_counts)
        if regular is None:
            return None
        return StratifiedCoxResult(
            reference_group=regular.reference_group,
            groups=regular.groups,
            wald_test=regular.wald_test,
            stratified_by=None,
        )

    reference = curves[0].group
    min_size = CONFIG.get("analysis.min_stratum_size", 10)
    strata_results: List[StratumResult] = []
    collected: Dict[str, Tuple[List[float], List[float]]] = {c.group: ([], []) for c in curves[1:]}

    with logger.track_time("stratified_cox_ph"):
        for stratum in strata_levels:
            members = [sid for sid, value in strata.items() if str(value) == stratum]
            if len(members) < min_size:
                logger.debug("Skipping stratum '%s' (%d < %d samples)", stratum, len(members), min_size)
                continue

            counts = Counter(sample_groups[sid] for sid in members if sid in sample_groups)
            stratum_curves = [c.with_total(counts[c.group]) for c in curves if counts.get(c.group, 0) > 0]
            if len(stratum_curves) < 2 or stratum_curves[0].group != reference:
                continue

            result = estimate_cox_ph(stratum_curves, counts)
            if result is None:
                continue

            strata_results.append(StratumResult(stratum=stratum, n_samples=sum(counts.values()), groups=result.groups))
            for estimate in result.groups:
                if estimate.name in collected:
                    collected[estimate.name][0].append(estimate.coefficient)
                    collected[estimate.name][1].append(estimate.se ** 2)

    if not strata_results:
        logger.warning("Stratified Cox PH: no stratum produced an estimate")
        return None

    groups: List[HazardRatioEstimate] = []
    heterogeneity: Dict[str, Dict[str, float]] = {}
    for name, (log_hrs, variances) in collected.items():
        if not log_hrs:
            continue
        groups.append(_pooled_estimate(name, log_hrs, variances))
        heterogeneity[name] = calculate_heterogeneity(log_hrs, variances)

    if not groups:
        return None

    cochran_q = float(sum(h["Q"] for h in heterogeneity.values()))
    cochran_df = int(sum(h["df"] for h in heterogeneity.values()))

    logger.log_analysis(
        "stratified Cox PH",
        n_groups=len(curves),
        n_samples=len(strata),
        strata=len(strata_results),
    )
    return StratifiedCoxResult(
        reference_group=reference,
        groups=groups,
        wald_test=_wald_test(groups),
        stratified_by=stratify_label or f"{len(strata_levels)} strata",
        strata_results=strata_results,
        heterogeneity=heterogeneity,
        cochran_q=cochran_q,
        cochran_df=cochran_df,
        cochran_p_value=chi_square_pvalue(cochran_q, cochran_df),
    )


# ==========================================
# MULTIVARIATE ESTIMATOR
# ==========================================


def _split_covariate(
    name: str,
    values: Mapping[str, Any],
) -> Optional[Tuple[List[str], List[str], str, str]]:
    """
    Split samples into (reference, comparison) for one covariate.

    Numeric covariates split at the median (> median vs <= median); categorical
    ones compare every other level against the first level in sorted order.
    """
    series = pd.Series(values, dtype=object).dropna()
    if series.empty:
        return None

    numeric = pd.to_numeric(series, errors="coerce")
    is_bool = series.map(lambda v: isinstance(v, (bool, np.bool_))).any()

    if numeric.notna().all() and not is_bool:
        median = float(np.median(numeric.to_numpy(dtype=float)))
        reference = numeric.index[numeric <= median].tolist()
        comparison = numeric.index[numeric > median].tolist()
        return reference, comparison, "continuous", f"> {median:g} vs <= {median:g}"

    labels = series.astype(str)
    levels = sorted(labels.unique())
    if len(levels) < 2:
        return None
    reference_level = levels[0]
    reference = labels.index[labels == reference_level].tolist()
    comparison = labels.index[labels != reference_level].tolist()
    return reference, comparison, "categorical", f"other vs {reference_level}"


def _blended_curve(
    label: str,
    curves: Sequence[SurvivalCurve],
    sample_ids: Sequence[str],
    sample_groups: Mapping[str, str],
) -> Optional[SurvivalCurve]:
    """
    Sample-count-weighted average of the group curves for a set of samples,
    evaluated on the union of all curve times.
    """
    counts = Counter(sample_groups[sid] for sid in sample_ids if sid in sample_groups)
    members = [(c, counts[c.group]) for c in curves if counts.get(c.group, 0) > 0]
    if not members:
        return None

    total = sum(w for _, w in members)
    times = sorted({t for c in curves for t in c.times})
    points = tuple(
        SurvivalTimePoint(time=t, survival=sum(c.survival_at(t) * w for c, w in members) / total)
        for t in times
    )
    return SurvivalCurve(group=label, points=points, n_total=total)


def concordance_index(risk_scores: Sequence[float], survival_times: Sequence[float]) -> float:
    """
    Harrell-style concordance between risk scores and survival times.

    Pairs with equal times are not comparable. A pair is concordant when the
    higher risk has the shorter time, discordant when the reverse, and tied (half
    credit) when risks are equal. Returns 0.5 when no pair is comparable.
    """
    risk = np.asarray(risk_scores, dtype=float)
    times = np.asarray(survival_times, dtype=float)
    if len(risk) < 2:
        return 0.5

    i, j = np.triu_indices(len(risk), k=1)
    comparable = times[i] != times[j]
    i, j = i[comparable], j[comparable]
    if len(i) == 0:
        return 0.5

    # Orient each pair so that `first` has the shorter time
    shorter_first = times[i] < times[j]
    first = np.where(shorter_first, i, j)
    second = np.where(shorter_first, j, i)

    concordant = int(np.sum(risk[first] > risk[second]))
    discordant = int(np.sum(risk[first] < risk[second]))
    tied = int(np.sum(risk[first] == risk[second]))

    return (concordant + 0.5 * tied) / (concordant + discordant + tied)


def null_log_likelihood(
    curves: Sequence[SurvivalCurve],
    group_counts: Optional[Mapping[str, int]] = None,
) -> float:
    """
    Breslow partial log-likelihood of the null model over the reconstructed
    event table: -sum(d_t * log(n_t)).
    """
    loglik = 0.0
    for row in reconstruct_event_data(curves, group_counts):
        if row.total_at_risk > 0 and row.total_events > 0:
            loglik -= row.total_events * np.log(row.total_at_risk)
    return float(loglik)


def multivariate_cox_ph(
    curves: Sequence[SurvivalCurve],
    sample_groups: Mapping[str, str],
    covariates: Mapping[str, Mapping[str, Any]],
    covariate_names: Optional[Sequence[str]] = None,
) -> Optional[MultivariateCoxResult]:
    """
    Independent per-covariate hazard ratios from subtype survival curves.

    Args:
        curves: One survival curve per subtype.
        sample_groups: sample id -> subtype label.
        covariates: covariate name -> sample id -> value (numeric or categorical).
        covariate_names: Subset/order of covariates to fit (default: all).

    For each covariate the samples are split (median for continuous, reference
    level vs rest for categorical), a blended curve is built per split, and the
    pairwise estimator compares the two blends. This is a simplification, not a
    joint partial-likelihood fit. P-values are Bonferroni and Benjamini-Hochberg
    adjusted across the fitted covariates. The model log-likelihood is the null
    log-likelihood plus half the Wald chi-square.

    Returns:
        MultivariateCoxResult, or None for fewer than 2 curves or when no
        covariate could be estimated.
    """
    if not curves or len(curves) < 2:
        return None

    names = list(covariate_names) if covariate_names is not None else list(covariates.keys())
    estimates: List[Tuple[HazardRatioEstimate, str, str, int, int]] = []
    skipped: List[str] = []
    comparison_members: Dict[str, set] = {}

    with logger.track_time("multivariate_cox_ph"):
        for name in names:
            values = {sid: v for sid, v in covariates.get(name, {}).items() if sid in sample_groups}
            split = _split_covariate(name, values)
            if split is None:
                skipped.append(name)
                continue
            reference_ids, comparison_ids, cov_type, description = split

            reference_curve = _blended_curve(f"{name}: reference", curves, reference_ids, sample_groups)
            comparison_curve = _blended_curve(f"{name}: comparison", curves, comparison_ids, sample_groups)
            if reference_curve is None or comparison_curve is None:
                skipped.append(name)
                continue

            estimate = _hazard_ratio_estimate(
                name, reference_curve, comparison_curve, reference_curve.n_total, comparison_curve.n_total
            )
            if estimate is None:
                skipped.append(name)
                continue

            estimates.append((estimate, cov_type, description, reference_curve.n_total, comparison_curve.n_total))
            comparison_members[name] = set(comparison_ids)

    if skipped:
        logger.info("Multivariate Cox PH: covariates not estimable: %s", skipped)
    if not estimates:
        return None

    raw_p = [e.p_value for e, *_ in estimates]
    bonferroni = apply_mcc(raw_p, method="bonferroni")
    fdr = apply_mcc(raw_p, method="fdr_bh")

    effects = [
        CovariateEffect(
            **asdict(estimate),
            p_value_bonferroni=float(bonferroni.iloc[k]),
            p_value_fdr=float(fdr.iloc[k]),
            covariate_type=cov_type,
            comparison=description,
            n_reference=int(n_ref),
            n_comparison=int(n_comp),
        )
        for k, (estimate, cov_type, description, n_ref, n_comp) in enumerate(estimates)
    ]

    # Naive additive risk score vs. each sample's subtype-median survival time
    median_times = {}
    for curve in curves:
        median = curve.median_survival_time()
        median_times[curve.group] = median if median is not None else curve.times[-1]
    samples = [sid for sid, group in sample_groups.items() if group in median_times]
    risk = [
        sum(e.coefficient for e in effects if sid in comparison_members[e.name])
        for sid in samples
    ]
    concordance = concordance_index(risk, [median_times[sample_groups[sid]] for sid in samples])

    group_counts = Counter(sample_groups.values())
    null_ll = null_log_likelihood(curves, group_counts)
    wald = _wald_test(effects)
    log_likelihood = null_ll + 0.5 * wald.chi_square

    logger.log_analysis(
        "multivariate Cox PH",
        n_groups=len(effects),
        n_samples=len(samples),
        concordance=round(concordance, 3),
    )
    return MultivariateCoxResult(
        covariates=effects,
        wald_test=wald,
        concordance=float(concordance),
        log_likelihood=float(log_likelihood),
        null_log_likelihood=null_ll,
        aic=float(-2 * log_likelihood + 2 * len(effects)),
        n_samples=len(samples),
        skipped_covariates=skipped,
    )
