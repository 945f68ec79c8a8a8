"""
PCA Engine

Principal components of a samples x features matrix by power iteration and
deflation, without a full eigendecomposition:

1. Column-center the matrix.
2. Build the n x n Gram matrix X X^T / (n-1) when there are fewer rows than
   columns (expression data: samples << genes), else the d x d covariance
   X^T X / (n-1). Both share their non-zero eigenvalues.
3. Power-iterate for the dominant eigenpair, deflate by lambda * v v^T, repeat.

Power iteration starts from a random unit vector. The random source is
injectable (`rng`) so runs are reproducible; component signs are arbitrary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PCAResult:
    pc1_scores: np.ndarray
    pc2_scores: np.ndarray
    variance1_pct: float
    variance2_pct: float
    eigenvalues: Tuple[float, float]
    used_gram: bool

    def to_frame(self, labels: Optional[Sequence[str]] = None) -> pd.DataFrame:
        return pd.DataFrame(
            {"PC1": self.pc1_scores, "PC2": self.pc2_scores},
            index=list(labels) if labels is not None else None,
        )


@dataclass(frozen=True)
class ScreeResult:
    variances: List[float]
    cumulative: List[float]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "Component": [f"PC{i + 1}" for i in range(len(self.variances))],
                "Variance (%)": self.variances,
                "Cumulative (%)": self.cumulative,
            }
        )


def _default_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    if rng is not None:
        return rng
    return np.random.default_rng(CONFIG.get("analysis.pca_random_seed"))


def _center(data: Sequence[Sequence[float]]) -> np.ndarray:
    X = np.asarray(data, dtype=float)
    return X - X.mean(axis=0, keepdims=True)


def _second_moment(centered: np.ndarray) -> Tuple[np.ndarray, bool]:
    """Gram matrix if rows < columns, else covariance; both scaled by 1/(n-1)."""
    n, d = centered.shape
    if n < d:
        return centered @ centered.T / (n - 1), True
    return centered.T @ centered / (n - 1), False


def power_iteration(
    matrix: np.ndarray,
    rng: np.random.Generator,
    max_iter: Optional[int] = None,
    tol: Optional[float] = None,
) -> Tuple[np.ndarray, float]:
    """
    Dominant eigenvector (unit length) and Rayleigh-quotient eigenvalue.

    Runs a fixed number of iterations, renormalizing each step, and stops early
    when the iterate collapses below `tol` (matrix is numerically zero).
    """
    max_iter = max_iter or CONFIG.get("analysis.pca_max_iter", 100)
    tol = tol if tol is not None else CONFIG.get("analysis.pca_tolerance", 1e-10)

    vector = rng.random(matrix.shape[0])
    vector = vector / np.linalg.norm(vector)

    eigenvalue = 0.0
    for _ in range(max_iter):
        new_vector = matrix @ vector
        eigenvalue = float(new_vector @ vector)
        norm = float(np.linalg.norm(new_vector))
        if norm < tol:
            break
        vector = new_vector / norm

    return vector, eigenvalue


def _is_negligible(eigenvalue: float, total_variance: float) -> bool:
    """Eigenvalue at or below `analysis.pca_min_variance_fraction` of the trace."""
    return eigenvalue <= CONFIG.get("analysis.pca_min_variance_fraction", 1e-6) * total_variance


def _scores(
    centered: np.ndarray, vector: np.ndarray, eigenvalue: float, total_variance: float, used_gram: bool
) -> np.ndarray:
    if used_gram:
        if eigenvalue <= 0 or _is_negligible(eigenvalue, total_variance):
            return np.zeros(centered.shape[0])
        # Gram eigenvector u relates to scores as X v = u * sqrt(lambda * (n - 1))
        return vector * np.sqrt(eigenvalue * (centered.shape[0] - 1))
    if _is_negligible(eigenvalue, total_variance):
        return np.zeros(centered.shape[0])
    return centered @ vector


def compute_pca(
    data: Sequence[Sequence[float]],
    rng: Optional[np.random.Generator] = None,
) -> Optional[PCAResult]:
    """
    Top two principal components of the rows of `data`.

    Returns:
        PCAResult with per-row scores and variance explained (%), or None when
        there are fewer than 2 rows or no columns.
    """
    X = np.asarray(data, dtype=float)
    if X.ndim != 2 or X.shape[0] < 2 or X.shape[1] == 0:
        logger.warning("PCA needs at least 2 rows and 1 column; got shape %s", X.shape)
        return None

    rng = _default_rng(rng)

    with logger.track_time("compute_pca"):
        centered = _center(X)
        moment, used_gram = _second_moment(centered)
        total_variance = float(np.trace(moment))

        v1, eig1 = power_iteration(moment, rng)
        pc1 = _scores(centered, v1, eig1, total_variance, used_gram)

        deflated = moment - eig1 * np.outer(v1, v1)
        v2, eig2 = power_iteration(deflated, rng)
        pc2 = _scores(centered, v2, eig2, total_variance, used_gram)

    if total_variance > 0:
        variance1 = max(eig1, 0.0) / total_variance * 100
        variance2 = max(eig2, 0.0) / total_variance * 100
    else:
        variance1 = variance2 = 0.0

    logger.log_analysis("PCA", n_groups=2, n_samples=X.shape[0], features=X.shape[1], gram=used_gram)
    return PCAResult(
        pc1_scores=pc1,
        pc2_scores=pc2,
        variance1_pct=float(variance1),
        variance2_pct=float(variance2),
        eigenvalues=(eig1, eig2),
        used_gram=used_gram,
    )


def compute_scree_variance(
    data: Sequence[Sequence[float]],
    max_components: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> ScreeResult:
    """
    Variance explained per component for a scree plot.

    Extracts up to min(features, max_components) components (default cap from
    `analysis.pca_scree_max_components`) and stops at the first eigenvalue at or
    below `analysis.pca_min_variance_fraction` of the total variance.
    Cumulative percentages are capped at 100.
    """
    X = np.asarray(data, dtype=float)
    if X.ndim != 2 or X.shape[0] < 2 or X.shape[1] == 0:
        return ScreeResult(variances=[], cumulative=[])

    rng = _default_rng(rng)
    cap = max_components or CONFIG.get("analysis.pca_scree_max_components", 10)

    centered = _center(X)
    current, _ = _second_moment(centered)
    total_variance = float(np.trace(current))

    eigenvalues: List[float] = []
    for _ in range(min(X.shape[1], current.shape[0], cap)):
        vector, eigenvalue = power_iteration(current, rng)
        if _is_negligible(eigenvalue, total_variance):
            break
        eigenvalues.append(eigenvalue)
        current = current - eigenvalue * np.outer(vector, vector)

    variances = [e / total_variance * 100 if total_variance > 0 else 0.0 for e in eigenvalues]
    cumulative = np.minimum(np.cumsum(variances), 100.0).tolist() if variances else []
    return ScreeResult(variances=[float(v) for v in variances], cumulative=cumulative)
