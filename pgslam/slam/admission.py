"""Node admission policy.

A laser scan becomes a pose-graph node only once the robot has moved far
enough, or turned far enough, since the last node. The translation term
uses the travel accumulated reading by reading; the rotation term compares
the current raw heading with the raw heading at the last node.

Author: Navigation Engineer
Date: 2024
"""

from ..utils.angles import angle_dist
from .config import SlamConfig
from .odometry import OdometryTracker


class NodeAdmissionPolicy:
    """
    Decides whether the current scan creates a new node.

    Args:
        config: Engine configuration (min_translation_threshold,
            min_angle_threshold).
        tracker: Odometry tracker shared with the engine.
    """

    def __init__(self, config: SlamConfig, tracker: OdometryTracker):
        self.config = config
        self.tracker = tracker

    def angle_since_last_node(self) -> float:
        """Shortest angular distance between the raw heading now and at the last node."""
        return angle_dist(
            self.tracker.last_raw_pose.angle, self.tracker.last_node_odom_pose.angle
        )

    def should_admit(self) -> bool:
        """
        Check the admission thresholds; reset the travel counter on admission.

        Returns:
            True when cumulative travel exceeds min_translation_threshold or
            the heading change exceeds min_angle_threshold.
        """
        moved = self.tracker.cumulative_translation > self.config.min_translation_threshold
        turned = self.angle_since_last_node() > self.config.min_angle_threshold
        if moved or turned:
            self.tracker.reset_translation()
            return True
        return False
