"""
Survival Curve Reconciler and Log-Rank Test

When only Kaplan-Meier curve points are available (no patient-level data),
per-time event counts are reconstructed from the survival drops:

    S(t) = S(t-) * (1 - d / n)   =>   d = round(n * (1 - S(t) / S(t-)))

starting from each group's cohort size. Points that already carry recorded
at-risk and event counts use those directly. The result is a reconstruction,
not ground truth.

The Mantel-Haenszel log-rank statistic is accumulated over the reconstructed
event times and referred to a chi-square distribution with groups - 1 df.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from logger import get_logger
from nmf_stats.advanced_stats_lib import chi_square_pvalue
from nmf_stats.survival_data import SurvivalCurve, resolve_group_size

logger = get_logger(__name__)


@dataclass(frozen=True)
class GroupEventCount:
    group: str
    at_risk: int
    events: int


@dataclass(frozen=True)
class EventTimeRow:
    time: float
    groups: List[GroupEventCount]

    @property
    def total_events(self) -> int:
        return sum(g.events for g in self.groups)

    @property
    def total_at_risk(self) -> int:
        return sum(g.at_risk for g in self.groups)


@dataclass(frozen=True)
class LogRankResult:
    chi_square: float
    df: int
    p_value: float

    def to_dict(self) -> Dict[str, float]:
        return {"Chi-square": self.chi_square, "df": self.df, "P-value": self.p_value}


def reconstruct_event_data(
    curves: Sequence[SurvivalCurve],
    group_counts: Optional[Mapping[str, int]] = None,
) -> List[EventTimeRow]:
    """
    Per-time at-risk/event table for all groups.

    Walks the union of curve times in increasing order (time 0 skipped). A group
    contributes events only where it has a point whose survival is below its last
    known value. Points with recorded counts use them as-is, and their censored
    samples leave the risk set after that time. Only times with at least one
    event across groups are kept. The reported at-risk is the count just before
    that time's events.
    """
    all_times = sorted({t for curve in curves for t in curve.times})

    state = {
        curve.group: {"at_risk": resolve_group_size(curve, group_counts), "prev_survival": 1.0}
        for curve in curves
    }

    rows: List[EventTimeRow] = []
    for time in all_times:
        if time == 0:
            continue

        groups: List[GroupEventCount] = []
        for curve in curves:
            s = state[curve.group]
            point = curve.point_at(time)
            events = 0
            at_risk = s["at_risk"]

            if point is not None and point.has_counts:
                events = max(0, int(point.events))
                at_risk = max(0, int(point.at_risk))
                s["prev_survival"] = point.survival
                s["at_risk"] = max(0, at_risk - events - int(point.censored or 0))
            elif point is not None and point.survival < s["prev_survival"]:
                ratio = point.survival / s["prev_survival"]
                events = max(0, int(round(s["at_risk"] * (1 - ratio))))
                s["prev_survival"] = point.survival
                s["at_risk"] = max(0, s["at_risk"] - events)

            groups.append(GroupEventCount(group=curve.group, at_risk=at_risk, events=events))

        if any(g.events > 0 for g in groups):
            rows.append(EventTimeRow(time=time, groups=groups))

    return rows


def event_table_frame(rows: Sequence[EventTimeRow]) -> pd.DataFrame:
    """Long-format DataFrame (time, group, at_risk, events) of a reconstruction."""
    return pd.DataFrame(
        [
            {"time": row.time, "group": g.group, "at_risk": g.at_risk, "events": g.events}
            for row in rows
            for g in row.groups
        ],
        columns=["time", "group", "at_risk", "events"],
    )


def log_rank_test(
    curves: Sequence[SurvivalCurve],
    group_counts: Optional[Mapping[str, int]] = None,
) -> Optional[LogRankResult]:
    """
    Log-rank test across survival curves.

    Observed-minus-expected events and the hypergeometric variance are summed
    per group (all groups but the last) over the reconstructed event times;
    chi-square = sum((O - E)^2 / V) with df = groups - 1.

    Returns:
        LogRankResult, or None for fewer than 2 groups or when no events can be
        reconstructed.
    """
    if not curves or len(curves) < 2:
        logger.warning("Log-rank test needs at least 2 groups")
        return None

    with logger.track_time("log_rank_test"):
        rows = reconstruct_event_data(curves, group_counts)
        if not rows:
            logger.warning("Log-rank test: no events reconstructed from %d curves", len(curves))
            return None

        n_groups = len(curves)
        observed_minus_expected = np.zeros(n_groups - 1)
        variances = np.zeros(n_groups - 1)

        for row in rows:
            total_events = row.total_events
            total_at_risk = row.total_at_risk
            if total_at_risk == 0 or total_events == 0:
                continue

            for i in range(n_groups - 1):
                n_i = row.groups[i].at_risk
                expected = n_i / total_at_risk * total_events
                observed_minus_expected[i] += row.groups[i].events - expected

                if total_at_risk > 1:
                    n_other = total_at_risk - n_i
                    variances[i] += (
                        n_i * n_other * total_events * (total_at_risk - total_events)
                        / (total_at_risk * total_at_risk * (total_at_risk - 1))
                    )

        positive = variances > 0
        chi_square = float(np.sum(observed_minus_expected[positive] ** 2 / variances[positive]))

    df = n_groups - 1
    result = LogRankResult(chi_square=chi_square, df=df, p_value=chi_square_pvalue(chi_square, df))
    logger.log_analysis(
        "log-rank",
        n_groups=n_groups,
        n_samples=sum(resolve_group_size(c, group_counts) for c in curves),
        chi_square=round(chi_square, 4),
    )
    return result
