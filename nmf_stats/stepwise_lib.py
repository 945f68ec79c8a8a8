"""
Stepwise Covariate Selection

Forward selection and backward elimination over the curve-based multivariate
Cox approximation (`cox_lib.multivariate_cox_ph`). Models are compared with a
likelihood-ratio test on the approximate log-likelihoods and with AIC.

Forward: start from the null model and, each round, add the candidate whose
min(LRT p, Wald p) is smallest, as long as it is below the entry threshold.
Backward: start from every estimable covariate and drop the least significant
while its p-value exceeds the threshold, never removing the last one.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from config import CONFIG
from logger import get_logger
from nmf_stats.advanced_stats_lib import chi_square_pvalue
from nmf_stats.cox_lib import MultivariateCoxResult, multivariate_cox_ph, null_log_likelihood
from nmf_stats.survival_data import SurvivalCurve

logger = get_logger(__name__)


@dataclass(frozen=True)
class StepwiseStep:
    step: int
    action: str
    covariate: Optional[str]
    p_value: float
    lrt_p_value: Optional[float]
    selected: List[str]
    aic: float
    aic_change: Optional[float]
    wald_p_value: float


@dataclass(frozen=True)
class StepwiseResult:
    direction: str
    steps: List[StepwiseStep]
    selected: List[str]
    rejected: List[str]
    final_model: Optional[MultivariateCoxResult] = None
    threshold: float = 0.05
    unestimable: List[str] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for s in self.steps:
            row = asdict(s)
            row["selected"] = ", ".join(s.selected)
            rows.append(row)
        return pd.DataFrame(rows)


def likelihood_ratio_test(ll_full: float, ll_reduced: float, df: int) -> Dict[str, float]:
    """
    LR = 2 * (LL_full - LL_reduced) ~ chi-square(df).

    Negative statistics (reduced model fits better) are clamped to 0.
    """
    statistic = max(0.0, 2.0 * (ll_full - ll_reduced))
    return {"statistic": statistic, "df": df, "p_value": chi_square_pvalue(statistic, df)}


def _fit(
    curves: Sequence[SurvivalCurve],
    sample_groups: Mapping[str, str],
    covariates: Mapping[str, Mapping[str, Any]],
    names: Sequence[str],
) -> Optional[MultivariateCoxResult]:
    if not names:
        return None
    return multivariate_cox_ph(curves, sample_groups, covariates, covariate_names=list(names))


def forward_selection(
    curves: Sequence[SurvivalCurve],
    sample_groups: Mapping[str, str],
    covariates: Mapping[str, Mapping[str, Any]],
    candidates: Optional[Sequence[str]] = None,
    threshold: Optional[float] = None,
) -> Optional[StepwiseResult]:
    """
    Forward stepwise selection starting from the null model.

    Args:
        curves: Subtype survival curves.
        sample_groups: sample id -> subtype label.
        covariates: covariate name -> sample id -> value.
        candidates: Covariates eligible for entry (default: all).
        threshold: Entry p-value threshold (default `analysis.stepwise_threshold`).

    Returns:
        StepwiseResult whose first step is the null model, or None for fewer
        than 2 curves.
    """
    if not curves or len(curves) < 2:
        return None

    threshold = threshold if threshold is not None else CONFIG.get("analysis.stepwise_threshold", 0.05)
    remaining = list(candidates) if candidates is not None else list(covariates.keys())

    null_ll = null_log_likelihood(curves, Counter(sample_groups.values()))
    current_ll = null_ll
    current_aic = -2 * null_ll
    selected: List[str] = []
    model: Optional[MultivariateCoxResult] = None

    steps = [
        StepwiseStep(
            step=0,
            action="null",
            covariate=None,
            p_value=1.0,
            lrt_p_value=None,
            selected=[],
            aic=current_aic,
            aic_change=None,
            wald_p_value=1.0,
        )
    ]

    with logger.track_time("forward_selection"):
        while remaining:
            best = None
            for candidate in remaining:
                fit = _fit(curves, sample_groups, covariates, selected + [candidate])
                if fit is None or fit.get(candidate) is None:
                    continue
                lrt = likelihood_ratio_test(fit.log_likelihood, current_ll, 1)
                wald_p = fit.get(candidate).p_value
                score = min(lrt["p_value"], wald_p)
                if best is None or score < best[0]:
                    best = (score, candidate, fit, lrt["p_value"])

            if best is None or best[0] >= threshold:
                break

            score, candidate, fit, lrt_p = best
            selected.append(candidate)
            remaining.remove(candidate)
            steps.append(
                StepwiseStep(
                    step=len(steps),
                    action="add",
                    covariate=candidate,
                    p_value=score,
                    lrt_p_value=lrt_p,
                    selected=list(selected),
                    aic=fit.aic,
                    aic_change=fit.aic - current_aic,
                    wald_p_value=fit.wald_test.p_value,
                )
            )
            logger.debug("Forward step %d: added %s (p=%.4g)", len(steps) - 1, candidate, score)
            current_ll, current_aic, model = fit.log_likelihood, fit.aic, fit

    logger.log_analysis("forward selection", n_groups=len(curves), n_samples=len(sample_groups), selected=len(selected))
    return StepwiseResult(
        direction="forward",
        steps=steps,
        selected=selected,
        rejected=remaining,
        final_model=model,
        threshold=threshold,
    )


def backward_elimination(
    curves: Sequence[SurvivalCurve],
    sample_groups: Mapping[str, str],
    covariates: Mapping[str, Mapping[str, Any]],
    candidates: Optional[Sequence[str]] = None,
    threshold: Optional[float] = None,
) -> Optional[StepwiseResult]:
    """
    Backward elimination from the full model.

    Covariates that cannot be estimated at all are set aside first (reported in
    `unestimable`). The covariate with the largest p-value is then removed and
    the model refitted while that p-value exceeds `threshold` and more than one
    covariate remains.

    Returns:
        StepwiseResult, or None for fewer than 2 curves or when no covariate is
        estimable.
    """
    if not curves or len(curves) < 2:
        return None

    threshold = threshold if threshold is not None else CONFIG.get("analysis.stepwise_threshold", 0.05)
    names = list(candidates) if candidates is not None else list(covariates.keys())

    model = _fit(curves, sample_groups, covariates, names)
    if model is None:
        logger.warning("Backward elimination: no estimable covariates among %s", names)
        return None

    unestimable = list(model.skipped_covariates)
    selected = model.covariate_names
    rejected: List[str] = []
    steps = [
        StepwiseStep(
            step=0,
            action="full",
            covariate=None,
            p_value=1.0,
            lrt_p_value=None,
            selected=list(selected),
            aic=model.aic,
            aic_change=None,
            wald_p_value=model.wald_test.p_value,
        )
    ]

    with logger.track_time("backward_elimination"):
        while len(selected) > 1:
            worst = max(model.covariates, key=lambda c: c.p_value)
            if worst.p_value <= threshold:
                break

            reduced_names = [name for name in selected if name != worst.name]
            reduced = _fit(curves, sample_groups, covariates, reduced_names)
            if reduced is None:
                break

            lrt = likelihood_ratio_test(model.log_likelihood, reduced.log_likelihood, 1)
            rejected.append(worst.name)
            steps.append(
                StepwiseStep(
                    step=len(steps),
                    action="remove",
                    covariate=worst.name,
                    p_value=worst.p_value,
                    lrt_p_value=lrt["p_value"],
                    selected=reduced.covariate_names,
                    aic=reduced.aic,
                    aic_change=reduced.aic - model.aic,
                    wald_p_value=reduced.wald_test.p_value,
                )
            )
            logger.debug("Backward step %d: removed %s (p=%.4g)", len(steps) - 1, worst.name, worst.p_value)
            model = reduced
            selected = reduced.covariate_names

    logger.log_analysis("backward elimination", n_groups=len(curves), n_samples=len(sample_groups), selected=len(selected))
    return StepwiseResult(
        direction="backward",
        steps=steps,
        selected=selected,
        rejected=rejected,
        final_model=model,
        threshold=threshold,
        unestimable=unestimable,
    )
