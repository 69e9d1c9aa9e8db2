"""Odometry tracking between pose-graph nodes.

The tracker keeps the latest raw odometry pose, the raw odometry pose
recorded when the most recent node was committed, and the distance
travelled since then. Raw odometry lives in its own (drifting) frame; only
differences between two raw poses are ever used, so that frame never has
to agree with the map frame.

Author: Navigation Engineer
Date: 2024
"""

from typing import Optional

import numpy as np

from .se2 import compose_into_map, express_in_target
from .types import Pose2D


class OdometryTracker:
    """
    Accumulates raw odometry and exposes the delta since the last node.

    Attributes:
        last_raw_pose: Most recent raw odometry pose (identity before the
            first reading).
        last_node_odom_pose: Raw odometry pose at the last committed node
            (identity before any node).
        cumulative_translation: Odometry travel (m) since the last node,
            summed reading to reading.
        initialized: True once at least one odometry reading arrived.
    """

    def __init__(self):
        self.last_raw_pose = Pose2D.identity()
        self.last_node_odom_pose = Pose2D.identity()
        self.cumulative_translation = 0.0
        self.initialized = False

    def observe_odometry(self, location, angle: float) -> None:
        """
        Record a raw odometry reading.

        Args:
            location: Raw position [x, y] in the odometry frame (meters).
            angle: Raw heading in the odometry frame (radians).

        Raises:
            ValueError: If the reading is not finite.
        """
        pose = Pose2D.from_translation(location, angle)
        step = np.linalg.norm(pose.translation - self.last_raw_pose.translation)
        self.cumulative_translation += float(step)
        self.last_raw_pose = pose
        self.initialized = True

    def delta_since_last_node(self) -> Pose2D:
        """Raw odometry motion since the last node, in that node's frame."""
        return express_in_target(self.last_raw_pose, self.last_node_odom_pose)

    def current_live_pose(self, last_node_pose: Optional[Pose2D]) -> Pose2D:
        """
        Map-frame pose predicted from the last node and the odometry delta.

        Args:
            last_node_pose: Optimized pose of the last committed node, or
                None when the graph is empty.

        Returns:
            The live pose; identity when no node exists yet.
        """
        if last_node_pose is None:
            return Pose2D.identity()
        return compose_into_map(self.delta_since_last_node(), last_node_pose)

    def reset_translation(self) -> None:
        self.cumulative_translation = 0.0

    def mark_node(self) -> Pose2D:
        """
        Record the current raw pose as the odometry pose of a new node.

        Returns:
            The recorded raw odometry pose.
        """
        self.last_node_odom_pose = self.last_raw_pose
        return self.last_node_odom_pose
