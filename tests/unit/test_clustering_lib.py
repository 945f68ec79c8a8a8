import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../")))

import numpy as np
import pytest

from nmf_stats.clustering_lib import hierarchical_cluster, order_heatmap, z_score_rows
from nmf_stats.distance_lib import DISTANCE_METRICS, LINKAGE_METHODS

pytestmark = pytest.mark.unit


class TestHierarchicalCluster:
    def test_identical_rows_merge_first(self):
        """Scenario: two identical rows are merged at height 0 and stay adjacent."""
        data = [[1, 1, 1], [1, 1, 1], [5, 5, 5]]
        result = hierarchical_cluster(data, "average", "euclidean")

        assert result.leaf_order == [2, 0, 1]
        first_merge = [n for n in result.tree.iter_nodes() if not n.is_leaf and n.distance == 0.0]
        assert len(first_merge) == 1
        assert set(first_merge[0].indices) == {0, 1}

        pos = {leaf: k for k, leaf in enumerate(result.leaf_order)}
        assert abs(pos[0] - pos[1]) == 1

    @pytest.mark.parametrize("method", LINKAGE_METHODS)
    @pytest.mark.parametrize("metric", DISTANCE_METRICS)
    def test_tree_shape(self, method, metric):
        rng = np.random.default_rng(7)
        data = rng.normal(size=(9, 4))
        result = hierarchical_cluster(data, method, metric)

        assert result.tree.count_leaves() == 9
        assert result.tree.count_internal() == 8
        assert sorted(result.leaf_order) == list(range(9))
        assert result.tree.size == 9

    def test_method_none_is_identity(self):
        result = hierarchical_cluster([[3, 1], [0, 0], [9, 9]], "none")
        assert result.leaf_order == [0, 1, 2]
        assert result.tree is None

    def test_single_row(self):
        result = hierarchical_cluster([[1.0, 2.0]], "average")
        assert result.leaf_order == [0]
        assert result.tree is None

    def test_empty_input(self):
        result = hierarchical_cluster([], "average")
        assert result.leaf_order == []

    def test_ward_heights(self):
        """Pairs merge at their distance; two pairs at mean distance * sqrt(2)."""
        data = [[0.0], [1.0], [10.0], [11.0]]
        result = hierarchical_cluster(data, "ward", "euclidean")
        assert result.tree.left.distance == pytest.approx(1.0)
        assert result.tree.right.distance == pytest.approx(1.0)
        assert result.tree.distance == pytest.approx(10.0 * np.sqrt(2.0))

    @pytest.mark.parametrize("metric", DISTANCE_METRICS)
    def test_ward_heights_never_drop_below_children(self, metric):
        # mean distance only grows by the size factor once clusters merge
        data = np.random.default_rng(17).normal(size=(14, 4))
        tree = hierarchical_cluster(data, "ward", metric).tree
        for node in tree.iter_nodes():
            if not node.is_leaf:
                assert node.distance >= node.left.distance - 1e-12
                assert node.distance >= node.right.distance - 1e-12
        assert tree.max_distance() == pytest.approx(tree.distance)

    def test_unknown_metric_raises(self):
        with pytest.raises(ValueError):
            hierarchical_cluster([[1, 2], [3, 4]], "average", "cosine")


class TestZScore:
    def test_rows_standardized(self):
        z = z_score_rows([[1.0, 2.0, 3.0], [10.0, 20.0, 30.0]])
        assert np.allclose(z.mean(axis=1), 0.0)
        assert np.allclose(z.std(axis=1), 1.0)
        assert np.allclose(z[0], z[1])

    def test_constant_row_is_zero(self):
        z = z_score_rows([[4.0, 4.0, 4.0], [1.0, 2.0, 3.0]])
        assert np.array_equal(z[0], [0.0, 0.0, 0.0])
        assert np.all(np.isfinite(z))


class TestOrderHeatmap:
    @pytest.fixture
    def expression(self):
        # genes x samples; samples 0/2 and 1/3 share a profile
        return np.array(
            [
                [5.0, 0.0, 5.1, 0.1, 2.0],
                [4.8, 0.2, 5.0, 0.0, 2.1],
                [0.1, 3.0, 0.0, 3.2, 1.0],
            ]
        )

    def test_samples_sorted_by_group_when_not_clustered(self, expression):
        groups = ["B", "A", "B", "A", "C"]
        ordering = order_heatmap(expression, groups, sample_method="none", gene_method="average")
        # Stable: ties keep original order
        assert ordering.sample_order == [1, 3, 0, 2, 4]
        assert ordering.sample_tree is None
        assert sorted(ordering.gene_order) == [0, 1, 2]

    def test_samples_clustered(self, expression):
        ordering = order_heatmap(expression, ["x"] * 5, sample_method="average", gene_method="none")
        pos = {s: k for k, s in enumerate(ordering.sample_order)}
        assert abs(pos[0] - pos[2]) == 1
        assert abs(pos[1] - pos[3]) == 1
        assert ordering.gene_order == [0, 1, 2]

    def test_z_score_applied(self, expression):
        ordering = order_heatmap(expression, ["x"] * 5, sample_method="none", gene_method="none", z_score=True)
        assert np.allclose(ordering.values.mean(axis=1), 0.0)

    def test_ordered_frame(self, expression):
        ordering = order_heatmap(expression, ["B", "A", "B", "A", "C"], sample_method="none", gene_method="none")
        frame = ordering.ordered_frame(["g1", "g2", "g3"], ["s1", "s2", "s3", "s4", "s5"])
        assert list(frame.columns) == ["s2", "s4", "s1", "s3", "s5"]
        assert list(frame.index) == ["g1", "g2", "g3"]
