"""
Hierarchical Clustering Builder

Agglomerative clustering of matrix rows into a binary merge tree plus the
derived leaf order used to arrange heatmap rows/columns and dendrograms.

The merge loop scans every pair of current clusters in row-major (i < j)
order and merges the globally closest pair; the first pair found wins ties.
That is O(n^3) overall and fine for the few hundred rows a heatmap shows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from nmf_stats.distance_lib import distance_matrix, linkage_distance

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClusterNode:
    """
    Node of a dendrogram.

    A leaf holds exactly one original row index and distance 0; an internal
    node owns two children and the linkage distance at which they merged.
    """

    indices: Tuple[int, ...]
    distance: float = 0.0
    left: Optional["ClusterNode"] = None
    right: Optional["ClusterNode"] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    @property
    def size(self) -> int:
        return len(self.indices)

    def iter_nodes(self) -> Iterator["ClusterNode"]:
        """Pre-order walk over every node of the subtree."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            if node.right is not None:
                stack.append(node.right)
            if node.left is not None:
                stack.append(node.left)

    def leaf_order(self) -> List[int]:
        """In-order leaf indices: left subtree first, then right."""
        return [node.indices[0] for node in self.iter_nodes() if node.is_leaf]

    def count_leaves(self) -> int:
        return sum(1 for node in self.iter_nodes() if node.is_leaf)

    def count_internal(self) -> int:
        return sum(1 for node in self.iter_nodes() if not node.is_leaf)

    def max_distance(self) -> float:
        """Largest merge height anywhere in the tree."""
        return max(node.distance for node in self.iter_nodes())


@dataclass(frozen=True)
class ClusteringResult:
    leaf_order: List[int]
    tree: Optional[ClusterNode]


def hierarchical_cluster(
    data: Sequence[Sequence[float]],
    method: Optional[str] = None,
    metric: Optional[str] = None,
) -> ClusteringResult:
    """
    Cluster the rows of `data`.

    Args:
        data: Rectangular numeric matrix; rows are the items being clustered.
        method: 'none', 'single', 'complete', 'average' or 'ward'
                (defaults to `analysis.cluster_method`).
        metric: 'euclidean', 'manhattan' or 'correlation'
                (defaults to `analysis.cluster_metric`).

    Returns:
        ClusteringResult. With method 'none' or at most one row the order is the
        identity and the tree is None.
    """
    method = method or CONFIG.get("analysis.cluster_method", "ward")
    metric = metric or CONFIG.get("analysis.cluster_metric", "euclidean")
    n = len(data)

    if method == "none" or n <= 1:
        return ClusteringResult(leaf_order=list(range(n)), tree=None)

    if n > CONFIG.get("performance.warn_cluster_size", 500):
        logger.warning("Clustering %d rows with an O(n^3) merge loop; this may be slow", n)

    with logger.track_time("hierarchical_cluster"):
        dist = distance_matrix(data, metric)

        clusters: List[ClusterNode] = [ClusterNode(indices=(i,)) for i in range(n)]
        cluster_ids: List[int] = list(range(n))
        next_id = n
        # Linkage values are fixed once both clusters exist, so they are cached per pair
        cache: Dict[Tuple[int, int], float] = {}

        while len(clusters) > 1:
            min_dist = np.inf
            min_i, min_j = 0, 1

            for i in range(len(clusters)):
                for j in range(i + 1, len(clusters)):
                    key = (cluster_ids[i], cluster_ids[j])
                    d = cache.get(key)
                    if d is None:
                        d = linkage_distance(clusters[i].indices, clusters[j].indices, dist, method)
                        cache[key] = d
                    if d < min_dist:
                        min_dist = d
                        min_i, min_j = i, j

            left, right = clusters[min_i], clusters[min_j]
            merged = ClusterNode(
                indices=left.indices + right.indices,
                distance=float(min_dist),
                left=left,
                right=right,
            )
            keep = [k for k in range(len(clusters)) if k != min_i and k != min_j]
            clusters = [clusters[k] for k in keep] + [merged]
            cluster_ids = [cluster_ids[k] for k in keep] + [next_id]
            next_id += 1

    tree = clusters[0]
    logger.log_analysis("hierarchical clustering", n_groups=1, n_samples=n, method=method, metric=metric)
    return ClusteringResult(leaf_order=tree.leaf_order(), tree=tree)


def z_score_rows(values: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Z-score each row with the population standard deviation.
    Constant rows become all zeros instead of NaN.
    """
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] == 0:
        return arr
    mean = arr.mean(axis=1, keepdims=True)
    std = arr.std(axis=1, keepdims=True)
    safe_std = np.where(std == 0, 1.0, std)
    return np.where(std == 0, 0.0, (arr - mean) / safe_std)


@dataclass(frozen=True)
class HeatmapOrdering:
    values: np.ndarray
    gene_order: List[int]
    sample_order: List[int]
    gene_tree: Optional[ClusterNode]
    sample_tree: Optional[ClusterNode]

    def ordered_frame(self, genes: Sequence[str], samples: Sequence[str]) -> pd.DataFrame:
        """Matrix reordered for display as a genes x samples DataFrame."""
        frame = pd.DataFrame(self.values, index=list(genes), columns=list(samples))
        return frame.iloc[self.gene_order, self.sample_order]


def order_heatmap(
    values: Sequence[Sequence[float]],
    sample_groups: Sequence[str],
    sample_method: Optional[str] = None,
    gene_method: Optional[str] = None,
    metric: Optional[str] = None,
    z_score: Optional[bool] = None,
) -> HeatmapOrdering:
    """
    Order a genes x samples expression matrix for heatmap display.

    Rows (genes) are clustered directly, columns (samples) on the transposed
    matrix. When samples are not clustered they are stably sorted by group label.
    """
    if z_score is None:
        z_score = CONFIG.get("analysis.heatmap_zscore", False)
    display = z_score_rows(values) if z_score else np.asarray(values, dtype=float)
    sample_method = sample_method or CONFIG.get("analysis.cluster_method", "ward")
    gene_method = gene_method or CONFIG.get("analysis.cluster_method", "ward")

    n_genes = display.shape[0] if display.ndim == 2 else 0
    n_samples = display.shape[1] if display.ndim == 2 else 0

    if sample_method != "none" and n_samples > 1:
        sample_result = hierarchical_cluster(display.T, sample_method, metric)
        sample_order, sample_tree = sample_result.leaf_order, sample_result.tree
    else:
        sample_order = sorted(range(n_samples), key=lambda idx: str(sample_groups[idx]))
        sample_tree = None

    gene_result = hierarchical_cluster(display, gene_method, metric)

    return HeatmapOrdering(
        values=display,
        gene_order=gene_result.leaf_order,
        sample_order=sample_order,
        gene_tree=gene_result.tree,
        sample_tree=sample_tree,
    )
