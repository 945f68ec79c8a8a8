"""
Cluster-quality metrics for NMF subtype assignments.

Scores are computed on the per-sample NMF score vectors against the assigned
subtype labels:
- Silhouette (higher is better, range -1..1)
- Davies-Bouldin (lower is better)
- Calinski-Harabasz (higher is better)
"""

from __future__ import annotations

from typing import Dict, Sequence

import numpy as np
from sklearn.metrics import calinski_harabasz_score, davies_bouldin_score, silhouette_score

from logger import get_logger

logger = get_logger(__name__)


def clustering_quality(scores: Sequence[Sequence[float]], labels: Sequence[str]) -> Dict[str, float]:
    """
    Silhouette, Davies-Bouldin and Calinski-Harabasz indices.

    All three are 0.0 when there are fewer than 2 clusters or not more samples
    than clusters, where the indices are undefined.
    """
    X = np.asarray(scores, dtype=float)
    y = np.asarray([str(label) for label in labels])
    n_clusters = len(np.unique(y))

    if X.ndim != 2 or n_clusters < 2 or len(y) <= n_clusters:
        logger.debug("Cluster metrics skipped: n=%d, clusters=%d", len(y), n_clusters)
        return {"silhouette": 0.0, "davies_bouldin": 0.0, "calinski_harabasz": 0.0}

    metrics = {
        "silhouette": float(silhouette_score(X, y, metric="euclidean")),
        "davies_bouldin": float(davies_bouldin_score(X, y)),
        "calinski_harabasz": float(calinski_harabasz_score(X, y)),
    }
    # Identical points inside every cluster give 0/0 in Calinski-Harabasz
    return {k: (v if np.isfinite(v) else 0.0) for k, v in metrics.items()}


def quality_label(silhouette: float) -> str:
    """Qualitative reading of a mean silhouette width."""
    if silhouette > 0.7:
        return "Strong"
    if silhouette > 0.5:
        return "Good"
    if silhouette > 0.25:
        return "Fair"
    return "Weak"
