"""Unit tests for pgslam.slam.admission.NodeAdmissionPolicy.

Author: Navigation Engineer
Date: 2024
"""

import pytest

from pgslam.slam import NodeAdmissionPolicy, OdometryTracker, SlamConfig


@pytest.fixture
def policy():
    config = SlamConfig(min_translation_threshold=0.5, min_angle_threshold=0.2)
    return NodeAdmissionPolicy(config, OdometryTracker())


class TestNodeAdmission:
    """Test suite for the translation / rotation admission thresholds."""

    def test_no_motion_does_not_admit(self, policy):
        """The policy applies to the very first scan as well."""
        assert not policy.should_admit()
        policy.tracker.observe_odometry([0.0, 0.0], 0.0)
        assert not policy.should_admit()

    def test_below_translation_threshold_never_admits(self, policy):
        for k in range(1, 5):
            policy.tracker.observe_odometry([0.1 * k, 0.0], 0.0)
            assert not policy.should_admit()
        assert policy.tracker.cumulative_translation == pytest.approx(0.4)

    def test_translation_admits_exactly_once_and_resets(self, policy):
        admissions = 0
        for k in range(1, 7):
            policy.tracker.observe_odometry([0.1 * k, 0.0], 0.0)
            if policy.should_admit():
                admissions += 1
                assert policy.tracker.cumulative_translation == 0.0
        assert admissions == 1

    def test_threshold_is_strict(self):
        config = SlamConfig(min_translation_threshold=1.0, min_angle_threshold=0.2)
        policy = NodeAdmissionPolicy(config, OdometryTracker())
        policy.tracker.observe_odometry([1.0, 0.0], 0.0)
        assert not policy.should_admit()
        policy.tracker.observe_odometry([1.5, 0.0], 0.0)
        assert policy.should_admit()

    def test_rotation_admits_without_translation(self, policy):
        policy.tracker.observe_odometry([0.0, 0.0], 0.25)
        assert policy.should_admit()

    def test_rotation_across_pi_uses_shortest_distance(self, policy):
        policy.tracker.observe_odometry([0.0, 0.0], 3.1)
        policy.tracker.mark_node()
        policy.should_admit()
        policy.tracker.observe_odometry([0.0, 0.0], -3.1)
        # |wrap(-3.1 - 3.1)| ≈ 0.083 < 0.2
        assert not policy.should_admit()

    def test_rotation_term_is_not_reset_by_admission(self, policy):
        """Only the translation counter resets; the heading term is recomputed."""
        policy.tracker.observe_odometry([0.0, 0.0], 0.5)
        assert policy.should_admit()
        # No node was marked, so the heading difference persists
        assert policy.should_admit()
        policy.tracker.mark_node()
        assert not policy.should_admit()

    def test_angle_since_last_node(self, policy):
        policy.tracker.observe_odometry([0.0, 0.0], 0.3)
        assert policy.angle_since_last_node() == pytest.approx(0.3)
