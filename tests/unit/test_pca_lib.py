import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../")))

import numpy as np
import pytest

from nmf_stats.pca_lib import compute_pca, compute_scree_variance, power_iteration

pytestmark = pytest.mark.unit


def _low_rank(n_rows, n_cols, seed=0):
    """Two strong directions (scales 10 and 3) plus small noise."""
    rng = np.random.default_rng(seed)
    a, c = rng.normal(size=n_rows), rng.normal(size=n_rows)
    b = rng.normal(size=n_cols)
    e = rng.normal(size=n_cols)
    e -= b * (e @ b) / (b @ b)
    b /= np.linalg.norm(b)
    e /= np.linalg.norm(e)
    return 10 * np.outer(a, b) + 3 * np.outer(c, e) + 0.01 * rng.normal(size=(n_rows, n_cols))


def _svd_scores(data):
    centered = data - data.mean(axis=0)
    u, s, _ = np.linalg.svd(centered, full_matrices=False)
    return u * s


class TestComputePCA:
    def test_variance_percentages_bounded(self):
        data = np.random.default_rng(3).normal(size=(12, 5))
        result = compute_pca(data, rng=np.random.default_rng(0))
        assert result.variance1_pct >= result.variance2_pct >= 0
        assert result.variance1_pct + result.variance2_pct <= 100 + 1e-9

    def test_dominant_feature(self):
        """A matrix dominated by one feature puts ~100% on PC1."""
        rng = np.random.default_rng(1)
        data = np.column_stack([rng.normal(scale=100, size=30), rng.normal(scale=0.01, size=(30, 3))])
        result = compute_pca(data, rng=np.random.default_rng(0))
        assert result.variance1_pct == pytest.approx(100, abs=0.01)

    def test_gram_path_matches_svd_magnitudes(self):
        data = _low_rank(6, 40)
        result = compute_pca(data, rng=np.random.default_rng(0))
        expected = _svd_scores(data)

        assert result.used_gram
        # Component signs are arbitrary
        assert np.allclose(np.abs(result.pc1_scores), np.abs(expected[:, 0]), rtol=1e-4, atol=1e-6)
        assert np.allclose(np.abs(result.pc2_scores), np.abs(expected[:, 1]), rtol=1e-4, atol=1e-6)

    def test_covariance_path_matches_svd_magnitudes(self):
        data = _low_rank(40, 6)
        result = compute_pca(data, rng=np.random.default_rng(0))
        expected = _svd_scores(data)

        assert not result.used_gram
        assert np.allclose(np.abs(result.pc1_scores), np.abs(expected[:, 0]), rtol=1e-4, atol=1e-6)
        assert np.allclose(np.abs(result.pc2_scores), np.abs(expected[:, 1]), rtol=1e-4, atol=1e-6)

    def test_reproducible_with_seeded_rng(self):
        data = np.random.default_rng(5).normal(size=(10, 8))
        r1 = compute_pca(data, rng=np.random.default_rng(42))
        r2 = compute_pca(data, rng=np.random.default_rng(42))
        assert np.array_equal(r1.pc1_scores, r2.pc1_scores)
        assert r1.variance1_pct == r2.variance1_pct

    def test_insufficient_rows(self):
        assert compute_pca([[1.0, 2.0, 3.0]]) is None

    def test_no_columns(self):
        assert compute_pca(np.empty((4, 0))) is None

    def test_constant_matrix(self):
        result = compute_pca(np.ones((5, 3)), rng=np.random.default_rng(0))
        assert result.variance1_pct == 0.0
        assert np.array_equal(result.pc1_scores, np.zeros(5))

    def test_scores_scale_with_small_magnitude_data(self):
        base = np.random.default_rng(7).normal(size=(20, 5))
        big = compute_pca(base, rng=np.random.default_rng(1))
        tiny = compute_pca(base * 1e-4, rng=np.random.default_rng(1))

        assert tiny.variance1_pct == pytest.approx(big.variance1_pct, rel=1e-6)
        assert np.abs(tiny.pc1_scores).max() > 0
        assert np.allclose(np.abs(tiny.pc1_scores), np.abs(big.pc1_scores) * 1e-4, rtol=1e-5, atol=1e-12)
        assert np.allclose(np.abs(tiny.pc2_scores), np.abs(big.pc2_scores) * 1e-4, rtol=1e-5, atol=1e-12)

    def test_gram_scores_scale_with_small_magnitude_data(self):
        base = _low_rank(6, 40)
        big = compute_pca(base, rng=np.random.default_rng(0))
        tiny = compute_pca(base * 1e-4, rng=np.random.default_rng(0))

        assert tiny.used_gram
        assert np.allclose(np.abs(tiny.pc1_scores), np.abs(big.pc1_scores) * 1e-4, rtol=1e-5, atol=1e-12)

    def test_to_frame(self):
        data = np.random.default_rng(2).normal(size=(4, 3))
        frame = compute_pca(data, rng=np.random.default_rng(0)).to_frame(["s1", "s2", "s3", "s4"])
        assert list(frame.columns) == ["PC1", "PC2"]
        assert list(frame.index) == ["s1", "s2", "s3", "s4"]


class TestPowerIteration:
    def test_diagonal_matrix(self):
        matrix = np.diag([5.0, 2.0, 1.0])
        vector, eigenvalue = power_iteration(matrix, np.random.default_rng(0))
        assert eigenvalue == pytest.approx(5.0)
        assert abs(vector[0]) == pytest.approx(1.0)

    def test_zero_matrix_stops(self):
        vector, eigenvalue = power_iteration(np.zeros((3, 3)), np.random.default_rng(0))
        assert eigenvalue == 0.0
        assert np.linalg.norm(vector) == pytest.approx(1.0)


class TestScree:
    def test_cumulative_monotone_and_capped(self):
        data = np.random.default_rng(9).normal(size=(15, 6))
        scree = compute_scree_variance(data, rng=np.random.default_rng(0))
        assert 1 <= len(scree.variances) <= 6
        assert all(b >= a - 1e-9 for a, b in zip(scree.cumulative, scree.cumulative[1:]))
        assert scree.cumulative[-1] <= 100.0

    def test_rank_one_stops_early(self):
        data = np.outer(np.arange(8.0), [1.0, 2.0, 3.0, 4.0])
        scree = compute_scree_variance(data, rng=np.random.default_rng(0))
        assert len(scree.variances) == 1
        assert scree.variances[0] == pytest.approx(100.0)

    def test_component_cap(self):
        data = np.random.default_rng(4).normal(size=(20, 10))
        scree = compute_scree_variance(data, max_components=3, rng=np.random.default_rng(0))
        assert len(scree.variances) == 3
        assert list(scree.to_frame()["Component"]) == ["PC1", "PC2", "PC3"]

    def test_empty_input(self):
        scree = compute_scree_variance([[1.0, 2.0]])
        assert scree.variances == []

    def test_small_magnitude_keeps_components(self):
        data = np.random.default_rng(9).normal(size=(15, 6))
        scree = compute_scree_variance(data, rng=np.random.default_rng(0))
        tiny = compute_scree_variance(data * 1e-4, rng=np.random.default_rng(0))
        assert len(tiny.variances) == len(scree.variances)
        assert np.allclose(tiny.variances, scree.variances, rtol=1e-6)
