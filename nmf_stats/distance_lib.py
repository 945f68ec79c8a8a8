"""
Distance & Linkage Engine

Pairwise distances between expression vectors and the cluster-merge criteria
used by the agglomerative clustering builder.

Metrics:
- euclidean:   sqrt(sum((a_i - b_i)^2))
- manhattan:   sum(|a_i - b_i|)
- correlation: 1 - Pearson r(a, b); a zero-variance vector has r = 0

Linkage criteria:
- single / complete / average: min / max / mean pairwise distance
- ward: mean distance * sqrt(2 * n1 * n2 / (n1 + n2)). This is an approximation
  of Ward's variance criterion, not the Lance-Williams update. Heights still
  never decrease: a merged cluster's mean distance to any other cluster is a
  weighted mean of its parts', and the size factor only grows.

Equal vector length is the caller's contract and is not validated.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from config import VALID_CLUSTER_METHODS, VALID_DISTANCE_METRICS

DISTANCE_METRICS = tuple(VALID_DISTANCE_METRICS)
LINKAGE_METHODS = tuple(m for m in VALID_CLUSTER_METHODS if m != "none")


def distance(a: Sequence[float], b: Sequence[float], metric: str = "euclidean") -> float:
    """
    Distance between two equal-length numeric vectors.

    Raises:
        ValueError: If `metric` is not one of DISTANCE_METRICS.
    """
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)

    if metric == "euclidean":
        return float(np.sqrt(np.sum((x - y) ** 2)))
    if metric == "manhattan":
        return float(np.sum(np.abs(x - y)))
    if metric == "correlation":
        dev_x = x - x.mean() if x.size else x
        dev_y = y - y.mean() if y.size else y
        den_x = float(np.sum(dev_x * dev_x))
        den_y = float(np.sum(dev_y * dev_y))
        corr = float(np.sum(dev_x * dev_y)) / np.sqrt(den_x * den_y) if den_x > 0 and den_y > 0 else 0.0
        # Rounding can push identical vectors a hair past r = 1
        return max(0.0, 1.0 - corr)

    raise ValueError(f"Unknown distance metric '{metric}'. Use one of {DISTANCE_METRICS}")


def distance_matrix(data: Sequence[Sequence[float]], metric: str = "euclidean") -> np.ndarray:
    """
    Full symmetric n x n matrix of pairwise distances between rows of `data`.

    Computed once, before any merge, and shared by every linkage evaluation.
    """
    rows = [np.asarray(row, dtype=float) for row in data]
    n = len(rows)
    dist = np.zeros((n, n), dtype=float)

    for i in range(n):
        for j in range(i + 1, n):
            d = distance(rows[i], rows[j], metric)
            dist[i, j] = d
            dist[j, i] = d

    return dist


def linkage_distance(
    cluster_a: Sequence[int],
    cluster_b: Sequence[int],
    dist: np.ndarray,
    method: str = "average",
) -> float:
    """
    Distance between two clusters given their member indices and the
    precomputed distance matrix.

    Raises:
        ValueError: If `method` is not one of LINKAGE_METHODS.
    """
    block = dist[np.ix_(list(cluster_a), list(cluster_b))]

    if method == "single":
        return float(block.min())
    if method == "complete":
        return float(block.max())
    if method == "average":
        return float(block.mean())
    if method == "ward":
        n1 = len(cluster_a)
        n2 = len(cluster_b)
        return float(block.mean() * np.sqrt((2.0 * n1 * n2) / (n1 + n2)))

    raise ValueError(f"Unknown linkage method '{method}'. Use one of {LINKAGE_METHODS}")
