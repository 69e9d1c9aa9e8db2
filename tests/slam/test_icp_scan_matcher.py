"""Unit tests for ICP scan matching.

Tests the closed-form SVD alignment, the ICP loop and the IcpScanMatcher
adapter that the constraint builder calls.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from pgslam.sim import simulate_laser_ranges, square_room_walls
from pgslam.slam import (
    IcpScanMatcher,
    Pose2D,
    align_point_to_line,
    align_svd,
    compose_into_map,
    compute_icp_covariance,
    estimate_normals,
    icp_point_to_line,
    icp_point_to_point,
    laser_scan_to_point_cloud,
    transform_points,
)
from pgslam.slam.scan_matching import find_correspondences
from pgslam.utils import angle_dist


@pytest.fixture
def blob():
    """Irregular 2D point cloud without symmetries."""
    rng = np.random.default_rng(0)
    return rng.uniform(-3.0, 3.0, size=(120, 2))


@pytest.fixture
def room_scans():
    """Noise-free scans of the simulated room taken 0.4 m apart.

    Returns (source, target, relative) where relative is the pose of the
    source scan in the target scan's frame.
    """
    walls = square_room_walls(10.0)
    pose_target = Pose2D(3.0, 4.0, 0.2)
    relative = Pose2D(0.4, 0.05, 0.05)
    pose_source = compose_into_map(relative, pose_target)
    clouds = []
    for pose in (pose_source, pose_target):
        ranges = simulate_laser_ranges(pose, walls, range_max=12.0, laser_offset=(0.0, 0.0))
        clouds.append(
            laser_scan_to_point_cloud(
                ranges, 0.1, 12.0, -np.pi / 2, np.pi / 2, laser_offset=(0.0, 0.0)
            )
        )
    return clouds[0], clouds[1], relative


class TestCorrespondences:
    """Test suite for find_correspondences."""

    def test_gating(self):
        source = np.array([[0.0, 0.0], [5.0, 5.0]])
        target = np.array([[0.1, 0.0], [1.0, 1.0]])
        src, tgt, dists = find_correspondences(source, target, max_distance=0.5)
        np.testing.assert_allclose(src, [[0.0, 0.0]])
        np.testing.assert_allclose(tgt, [[0.1, 0.0]])
        np.testing.assert_allclose(dists, [0.1])

    def test_empty_target(self):
        src, tgt, dists = find_correspondences(np.zeros((3, 2)), np.empty((0, 2)))
        assert src.shape == (0, 2)
        assert dists.shape == (0,)

    def test_bad_shape(self):
        with pytest.raises(ValueError):
            find_correspondences(np.zeros((3, 3)), np.zeros((3, 2)))


class TestAlignSvd:
    """Test suite for align_svd."""

    def test_recovers_rigid_transform(self, blob):
        true_pose = Pose2D(0.7, -1.2, 0.4)
        estimate = align_svd(blob, transform_points(true_pose, blob))
        np.testing.assert_allclose(estimate.to_array(), true_pose.to_array(), atol=1e-9)

    def test_needs_two_points(self):
        with pytest.raises(ValueError):
            align_svd(np.zeros((1, 2)), np.zeros((1, 2)))


class TestIcpPointToPoint:
    """Test suite for the ICP loop."""

    def test_converges_from_identity(self, blob):
        true_pose = Pose2D(0.05, -0.03, 0.02)
        target = transform_points(true_pose, blob)
        pose, iterations, residual, converged = icp_point_to_point(
            blob, target, max_correspondence_distance=1.0
        )
        assert converged
        assert iterations >= 1
        np.testing.assert_allclose(pose.translation, true_pose.translation, atol=1e-4)
        assert angle_dist(pose.angle, true_pose.angle) < 1e-4
        assert residual < 1e-6

    def test_uses_initial_guess(self, blob):
        true_pose = Pose2D(2.0, 1.0, 1.0)
        target = transform_points(true_pose, blob)
        guess = Pose2D(1.98, 1.01, 0.99)
        pose, _, _, converged = icp_point_to_point(
            blob, target, initial_pose=guess, max_correspondence_distance=1.0
        )
        assert converged
        np.testing.assert_allclose(pose.translation, true_pose.translation, atol=1e-4)
        assert angle_dist(pose.angle, true_pose.angle) < 1e-4

    def test_empty_scan_rejected(self, blob):
        with pytest.raises(ValueError):
            icp_point_to_point(np.empty((0, 2)), blob)

    def test_too_few_correspondences(self, blob):
        far = blob + 100.0
        _, _, _, converged = icp_point_to_point(
            blob, far, max_correspondence_distance=1.0
        )
        assert not converged


class TestPointToLine:
    """Test suite for normal estimation and point-to-line ICP."""

    def test_normals_of_a_line(self):
        points = np.column_stack([np.linspace(0.0, 4.0, 9), np.full(9, 2.0)])
        normals = estimate_normals(points, num_neighbors=3)
        np.testing.assert_allclose(np.abs(normals), np.tile([0.0, 1.0], (9, 1)), atol=1e-9)

    def test_normals_need_two_points(self):
        with pytest.raises(ValueError):
            estimate_normals(np.zeros((1, 2)))

    def test_align_recovers_translation_on_corner(self):
        # Points on the x- and y-axis with their line normals
        along_x = np.column_stack([np.linspace(1.0, 3.0, 5), np.zeros(5)])
        along_y = np.column_stack([np.zeros(5), np.linspace(1.0, 3.0, 5)])
        source = np.vstack([along_x, along_y])
        normals = np.vstack([np.tile([0.0, 1.0], (5, 1)), np.tile([1.0, 0.0], (5, 1))])
        target = source + np.array([0.1, -0.05])

        delta = align_point_to_line(source, target, normals)
        np.testing.assert_allclose(delta.to_array(), [0.1, -0.05, 0.0], atol=1e-12)

    def test_align_slides_freely_along_single_wall(self):
        source = np.column_stack([np.linspace(-2.0, 2.0, 9), np.zeros(9)])
        normals = np.tile([0.0, 1.0], (9, 1))
        target = source + np.array([0.3, 0.1])

        delta = align_point_to_line(source, target, normals)
        # Only the offset across the wall is observable
        np.testing.assert_allclose(delta.to_array(), [0.0, 0.1, 0.0], atol=1e-12)

    def test_align_needs_three_points(self):
        with pytest.raises(ValueError):
            align_point_to_line(np.zeros((2, 2)), np.zeros((2, 2)), np.zeros((2, 2)))

    def test_room_scans_align(self, room_scans):
        source, target, relative = room_scans
        guess = Pose2D(0.45, 0.02, 0.07)
        pose, _, _, converged = icp_point_to_line(
            source, target, initial_pose=guess, max_correspondence_distance=1.0
        )
        assert converged
        np.testing.assert_allclose(pose.translation, relative.translation, atol=0.02)
        assert angle_dist(pose.angle, relative.angle) < 0.01

    def test_matcher_defaults_to_point_to_line(self, room_scans):
        source, target, relative = room_scans
        matcher = IcpScanMatcher()
        assert matcher.method == "point_to_line"

        result = matcher.match(source, target, Pose2D(0.45, 0.02, 0.07))
        assert result.converged
        np.testing.assert_allclose(result.relative_pose.translation, relative.translation, atol=0.02)
        assert angle_dist(result.relative_pose.angle, relative.angle) < 0.01

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            IcpScanMatcher(method="point_to_plane")


class TestIcpCovariance:
    """Test suite for the heuristic ICP covariance."""

    def test_few_points_high_uncertainty(self):
        points = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        cov = compute_icp_covariance(points, points, Pose2D.identity())
        np.testing.assert_allclose(cov, np.diag([1.0, 1.0, 0.1]))

    def test_perfect_alignment_is_zero(self, blob):
        cov = compute_icp_covariance(blob, blob, Pose2D.identity())
        np.testing.assert_allclose(cov, np.zeros((3, 3)), atol=1e-20)


class TestIcpScanMatcher:
    """Test suite for the ScanMatcher adapter."""

    def test_match_recovers_relative_pose(self, blob):
        true_pose = Pose2D(0.1, 0.05, -0.03)
        target = transform_points(true_pose, blob)
        result = IcpScanMatcher(method="point_to_point").match(blob, target, Pose2D.identity())
        assert result.converged
        np.testing.assert_allclose(result.relative_pose.translation, [0.1, 0.05], atol=1e-4)
        assert angle_dist(result.relative_pose.angle, -0.03) < 1e-4
        assert result.mean_squared_residual < 1e-6

    def test_covariance_is_floored(self, blob):
        matcher = IcpScanMatcher(min_sigma_xy=0.02, min_sigma_theta=0.01)
        result = matcher.match(blob, blob, Pose2D.identity())
        assert result.converged
        np.testing.assert_allclose(
            np.diag(result.covariance), [0.02**2, 0.02**2, 0.01**2]
        )
        assert np.all(np.linalg.eigvalsh(result.covariance) > 0)

    def test_too_few_points_not_converged(self):
        points = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        guess = Pose2D(0.3, 0.0, 0.0)
        result = IcpScanMatcher(min_points=10).match(points, points, guess)
        assert not result.converged
        assert result.relative_pose == guess

    def test_unrelated_clouds_rejected(self, blob):
        other = np.random.default_rng(7).uniform(-3.0, 3.0, size=(120, 2))
        result = IcpScanMatcher(max_mean_squared_residual=1e-4).match(
            blob, other, Pose2D.identity()
        )
        assert not result.converged

    def test_deterministic(self, blob):
        target = transform_points(Pose2D(0.1, 0.0, 0.02), blob)
        matcher = IcpScanMatcher()
        first = matcher.match(blob, target, Pose2D.identity())
        second = matcher.match(blob, target, Pose2D.identity())
        assert first.relative_pose == second.relative_pose
        np.testing.assert_array_equal(first.covariance, second.covariance)

    def test_invalid_floor(self):
        with pytest.raises(ValueError):
            IcpScanMatcher(min_sigma_xy=0.0)
