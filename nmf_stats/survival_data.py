"""
Survival curve value objects.

A SurvivalCurve is one group's Kaplan-Meier step function: ordered
(time, survival) points, optionally with the at-risk/event/censored counts a
full KM fit reports. Curves are immutable; construction sorts the points,
synthesizes (0, 1.0) when missing and enforces non-increasing survival.

Curves come either from the dashboard's results JSON (`SurvivalCurve.from_dict`)
or from sample-level data via `km_curves_from_samples` (lifelines).
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

# Suppress DeprecationWarning from lifelines (datetime.utcnow)
warnings.filterwarnings("ignore", category=DeprecationWarning, module="lifelines")
from lifelines import KaplanMeierFitter

from config import CONFIG
from logger import get_logger
from nmf_stats.advanced_stats_lib import greenwood_variance

logger = get_logger(__name__)


@dataclass(frozen=True)
class SurvivalTimePoint:
    time: float
    survival: float
    at_risk: Optional[int] = None
    events: Optional[int] = None
    censored: Optional[int] = None

    @property
    def has_counts(self) -> bool:
        return self.at_risk is not None and self.events is not None


@dataclass(frozen=True)
class SurvivalCurve:
    group: str
    points: Tuple[SurvivalTimePoint, ...]
    n_total: Optional[int] = None
    _index: Dict[float, SurvivalTimePoint] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        points = sorted(self.points, key=lambda p: p.time)
        if not points or points[0].time > 0:
            points.insert(0, SurvivalTimePoint(time=0.0, survival=1.0))

        survival = np.array([p.survival for p in points], dtype=float)
        monotone = np.minimum.accumulate(survival)
        if np.any(monotone < survival):
            logger.warning("Survival curve '%s' increases over time; clamping to running minimum", self.group)
            points = [
                SurvivalTimePoint(p.time, float(s), p.at_risk, p.events, p.censored)
                for p, s in zip(points, monotone)
            ]

        object.__setattr__(self, "points", tuple(points))
        object.__setattr__(self, "_index", {p.time: p for p in points})

    @classmethod
    def from_points(
        cls,
        group: str,
        points: Sequence[Tuple[float, float]],
        n_total: Optional[int] = None,
    ) -> "SurvivalCurve":
        """Build a curve from bare (time, survival) pairs."""
        return cls(
            group=str(group),
            points=tuple(SurvivalTimePoint(float(t), float(s)) for t, s in points),
            n_total=n_total,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SurvivalCurve":
        """
        Parse one entry of the results JSON:
        {"subtype": ..., "nTotal": ..., "timePoints": [{"time", "survival", "atRisk", "events", "censored"}]}
        """

        def _opt_int(value: Any) -> Optional[int]:
            return None if value is None else int(value)

        points = tuple(
            SurvivalTimePoint(
                time=float(tp["time"]),
                survival=float(tp["survival"]),
                at_risk=_opt_int(tp.get("atRisk")),
                events=_opt_int(tp.get("events")),
                censored=_opt_int(tp.get("censored")),
            )
            for tp in data.get("timePoints", [])
        )
        return cls(group=str(data["subtype"]), points=points, n_total=_opt_int(data.get("nTotal")))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "subtype": self.group,
            "timePoints": [
                {k: v for k, v in (
                    ("time", p.time),
                    ("survival", p.survival),
                    ("atRisk", p.at_risk),
                    ("events", p.events),
                    ("censored", p.censored),
                ) if v is not None}
                for p in self.points
            ],
        }
        if self.n_total is not None:
            result["nTotal"] = self.n_total
        return result

    @property
    def times(self) -> List[float]:
        return [p.time for p in self.points]

    def point_at(self, time: float) -> Optional[SurvivalTimePoint]:
        """The point recorded exactly at `time`, if any."""
        return self._index.get(time)

    def survival_at(self, time: float) -> float:
        """Step-function value: survival of the last point at or before `time`."""
        value = 1.0
        for p in self.points:
            if p.time > time:
                break
            value = p.survival
        return value

    def median_survival_time(self) -> Optional[float]:
        """First time the curve reaches 0.5 or below; None if it never does."""
        for p in self.points:
            if p.survival <= 0.5:
                return p.time
        return None

    def confidence_band(self, z: Optional[float] = None) -> pd.DataFrame:
        """
        Pointwise confidence band from the Greenwood variance, on the log(-log)
        scale so the bounds stay inside [0, 1]:
        S(t) ** exp(+/- z * sqrt(sum d / (n (n - d))) / -log S(t)).

        Every recorded point after the origin must carry at-risk and event
        counts. Where S(t) is 1 or 0 both bounds equal S(t).

        Raises:
            ValueError: If a point lacks its counts.
        """
        z = z if z is not None else CONFIG.get("analysis.ci_z", 1.96)
        missing = [p.time for p in self.points[1:] if not p.has_counts]
        if missing:
            raise ValueError(
                f"Curve '{self.group}' needs at-risk and event counts for a confidence band "
                f"(missing at t={missing[0]:g})"
            )

        survival = np.array([p.survival for p in self.points], dtype=float)
        at_risk = np.array([p.at_risk or 0 for p in self.points], dtype=float)
        events = np.array([p.events or 0 for p in self.points], dtype=float)
        variance = greenwood_variance(survival, at_risk, events)

        lower, upper = survival.copy(), survival.copy()
        inside = (survival > 0) & (survival < 1)
        s = survival[inside]
        log_s = np.log(s)
        # sqrt(V) / S is the square root of the cumulative Greenwood sum
        spread = z * np.sqrt(variance[inside]) / (s * -log_s)
        lower[inside] = s ** np.exp(spread)
        upper[inside] = s ** np.exp(-spread)

        return pd.DataFrame(
            {
                "time": self.times,
                "survival": survival,
                "variance": variance,
                "lower": lower,
                "upper": upper,
            }
        )

    def with_total(self, n_total: Optional[int]) -> "SurvivalCurve":
        return SurvivalCurve(group=self.group, points=self.points, n_total=n_total)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "time": p.time,
                    "survival": p.survival,
                    "at_risk": p.at_risk,
                    "events": p.events,
                    "censored": p.censored,
                }
                for p in self.points
            ]
        )


def resolve_group_size(curve: SurvivalCurve, group_counts: Optional[Mapping[str, int]] = None) -> int:
    """
    Starting cohort size for a group: explicit count, else the curve's own
    total, else `analysis.survival_default_group_size`.
    """
    if group_counts and group_counts.get(curve.group):
        return int(group_counts[curve.group])
    if curve.n_total:
        return int(curve.n_total)
    return int(CONFIG.get("analysis.survival_default_group_size", 100))


def km_curves_from_samples(
    df: pd.DataFrame,
    time_col: str,
    event_col: str,
    group_col: str,
) -> List[SurvivalCurve]:
    """
    Fit one Kaplan-Meier curve per group from sample-level survival data.

    Rows with a missing time, event or group are dropped. Groups are returned in
    sorted label order; each point carries lifelines' at-risk/event/censored counts.
    """
    data = df[[time_col, event_col, group_col]].dropna()
    if len(data) < len(df):
        logger.info("KM curves: dropped %d rows with missing values", len(df) - len(data))

    curves: List[SurvivalCurve] = []
    for group in sorted(data[group_col].unique(), key=str):
        df_g = data[data[group_col] == group]
        kmf = KaplanMeierFitter()
        kmf.fit(df_g[time_col], event_observed=df_g[event_col], label=str(group))

        survival = kmf.survival_function_.iloc[:, 0]
        table = kmf.event_table
        points = tuple(
            SurvivalTimePoint(
                time=float(t),
                survival=float(survival.loc[t]),
                at_risk=int(table.loc[t, "at_risk"]),
                events=int(table.loc[t, "observed"]),
                censored=int(table.loc[t, "censored"]),
            )
            for t in table.index
        )
        curves.append(SurvivalCurve(group=str(group), points=points, n_total=len(df_g)))

    logger.log_analysis("Kaplan-Meier", n_groups=len(curves), n_samples=len(data))
    return curves
