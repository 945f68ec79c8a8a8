"""
Formatting helpers for survival statistics shown in tables and forest plots.
Thresholds come from config.py.
"""

from __future__ import annotations

import numpy as np

from config import CONFIG


def format_p_value(p: float) -> str:
    """
    Format a p-value for display.

    Below `analysis.pvalue_format_small` -> "p < 0.0001"; below 0.001 -> exponent
    notation without zero padding ("5.00e-4"); below 0.01 -> four decimals;
    otherwise three decimals.
    """
    if p is None or not np.isfinite(p):
        return "p = NA"

    small = CONFIG.get("analysis.pvalue_format_small", 0.0001)
    if p < small:
        return f"p < {small:g}"
    if p < 0.001:
        mantissa, exponent = f"{p:.2e}".split("e")
        return f"p = {mantissa}e{int(exponent)}"
    if p < 0.01:
        return f"p = {p:.4f}"
    return f"p = {p:.3f}"


def format_hazard_ratio(hr: float, lower_ci: float, upper_ci: float) -> str:
    """Format "HR (lower-upper)" with two decimals."""
    return f"{hr:.2f} ({lower_ci:.2f}-{upper_ci:.2f})"
