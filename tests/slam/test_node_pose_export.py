"""Unit tests for pgslam.slam.export.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np

from pgslam.slam import read_node_poses, write_node_poses
from pgslam.slam.export import POSE_CSV_HEADER

from .conftest import build_node


class TestNodePoseExport:
    """Test suite for the node pose CSV."""

    def test_write_and_read(self, tmp_path):
        nodes = [build_node(0), build_node(1, x=0.5, y=-0.25, angle=0.1)]
        path = write_node_poses(nodes, tmp_path / "poses.csv")

        lines = path.read_text().splitlines()
        assert lines[0] == POSE_CSV_HEADER
        assert lines[2] == "1,0.500000,-0.250000,0.100000"

        data = read_node_poses(path)
        assert data.shape == (2, 4)
        np.testing.assert_allclose(data[:, 0], [0, 1])
        np.testing.assert_allclose(data[1, 1:], [0.5, -0.25, 0.1])

    def test_single_node_reads_as_two_dimensional(self, tmp_path):
        path = write_node_poses([build_node(0, x=2.0)], tmp_path / "one.csv")
        assert read_node_poses(path).shape == (1, 4)

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "out" / "run1" / "poses.csv"
        write_node_poses([build_node(0)], path)
        assert path.exists()

    def test_empty_graph_writes_header_only(self, tmp_path):
        path = write_node_poses([], tmp_path / "empty.csv")
        assert path.read_text().strip() == POSE_CSV_HEADER
