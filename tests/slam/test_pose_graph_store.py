"""Unit tests for pgslam.slam.pose_graph.PoseGraphStore.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from pgslam.slam import PoseGraphStore, Pose2D, SlamConfig, create_prior_factor
from pgslam.slam.factors import create_scan_match_factor

from .conftest import build_node


@pytest.fixture
def store():
    graph = PoseGraphStore()
    graph.append(build_node(0), [create_prior_factor(0, Pose2D.identity(), SlamConfig())])
    graph.append(
        build_node(1, x=1.0),
        [create_scan_match_factor(0, 1, Pose2D(1.0, 0.0, 0.0), np.eye(3))],
    )
    return graph


class TestPoseGraphStore:
    """Test suite for the node arena and factor list."""

    def test_empty(self):
        graph = PoseGraphStore()
        assert len(graph) == 0
        assert graph.next_id() == 0
        assert graph.last_node() is None
        assert graph.current_map().shape == (0, 2)

    def test_append(self, store):
        assert len(store) == 2
        assert store.num_factors == 2
        assert store.next_id() == 2
        assert store.last_node().id == 1
        assert store.node(1).estimated_pose == Pose2D(1.0, 0.0, 0.0)

    def test_append_out_of_order(self, store):
        with pytest.raises(ValueError, match="expected node id 2"):
            store.append(build_node(3))

    def test_append_factor_to_future_node(self, store):
        factor = create_scan_match_factor(2, 3, Pose2D.identity(), np.eye(3))
        with pytest.raises(ValueError, match="unknown node 3"):
            store.append(build_node(2), [factor])
        assert len(store) == 2
        assert store.num_factors == 2

    def test_factors_returns_copy(self, store):
        factors = store.factors
        factors.clear()
        assert store.num_factors == 2

    def test_set_factors(self, store):
        prior = store.factors[0]
        store.set_factors([prior])
        assert store.factors == [prior]
        store.set_factors([])
        assert store.num_factors == 0

    def test_update_poses(self, store):
        store.update_poses({0: Pose2D(0.1, 0.0, 0.0), 1: Pose2D(1.1, 0.2, 0.3)})
        assert store.current_poses() == {0: Pose2D(0.1, 0.0, 0.0), 1: Pose2D(1.1, 0.2, 0.3)}

    def test_update_poses_missing_leaves_graph_unchanged(self, store):
        before = store.current_poses()
        with pytest.raises(ValueError, match=r"\[1\]"):
            store.update_poses({0: Pose2D(5.0, 5.0, 0.0)})
        assert store.current_poses() == before

    def test_update_poses_bad_value_leaves_graph_unchanged(self, store):
        before = store.current_poses()
        with pytest.raises(ValueError):
            store.update_poses({0: Pose2D(5.0, 5.0, 0.0), 1: np.zeros(3)})
        assert store.current_poses() == before

    def test_snapshots_are_independent(self, store):
        snapshot = store.snapshots()
        snapshot[0].estimated_pose = Pose2D(9.0, 9.0, 0.0)
        snapshot.pop()
        assert store.node(0).estimated_pose == Pose2D.identity()
        assert len(store) == 2

    def test_current_map_uses_estimates(self):
        graph = PoseGraphStore()
        graph.append(build_node(0, cloud=np.array([[1.0, 0.0]])))
        graph.append(build_node(1, x=2.0, angle=np.pi / 2, cloud=np.array([[1.0, 0.0], [0.0, 1.0]])))
        np.testing.assert_allclose(
            graph.current_map(), [[1.0, 0.0], [2.0, 1.0], [1.0, 0.0]], atol=1e-12
        )

        graph.update_poses({0: Pose2D(0.0, 1.0, 0.0), 1: Pose2D(2.0, 0.0, np.pi / 2)})
        np.testing.assert_allclose(graph.current_map()[0], [1.0, 1.0], atol=1e-12)

    def test_current_map_skips_empty_clouds(self):
        graph = PoseGraphStore()
        graph.append(build_node(0, cloud=np.empty((0, 2))))
        graph.append(build_node(1, cloud=np.array([[1.0, 2.0]])))
        np.testing.assert_allclose(graph.current_map(), [[1.0, 2.0]])
