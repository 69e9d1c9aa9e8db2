"""SE(2) frame algebra for the pose-graph SLAM engine.

The engine works with three kinds of frames: the map frame, the local
frame of each node (its sensor frame at admission time) and the raw
odometry frame. Two operations relate them and are each other's inverse:

    - compose_into_map: a pose expressed relative to a source frame,
      together with the source frame's pose in the map, gives the pose in
      the map (p_map = src ⊕ p_rel).
    - express_in_target: a pose in the map expressed relative to a target
      frame (p_rel = target⁻¹ ⊕ p_map).

For any poses p, f:
    express_in_target(compose_into_map(p, f), f) == p
within floating-point tolerance, including when f.angle is exactly π.

Key functions:
    - compose_into_map, express_in_target: pose composition/decomposition
    - transform_points: move node-frame points into the map frame
    - rotation_matrix: 2x2 rotation for a heading

Author: Navigation Engineer
Date: 2024
"""

import numpy as np

from ..utils.angles import wrap_angle
from .types import Pose2D


def rotation_matrix(angle: float) -> np.ndarray:
    """
    2D rotation matrix R(θ) = [[cos θ, -sin θ], [sin θ, cos θ]].

    Args:
        angle: Rotation angle in radians.

    Returns:
        Array of shape (2, 2).
    """
    cos_a = np.cos(angle)
    sin_a = np.sin(angle)
    return np.array([[cos_a, -sin_a], [sin_a, cos_a]], dtype=np.float64)


def compose_into_map(pose_rel_src: Pose2D, src_pose_in_map: Pose2D) -> Pose2D:
    """
    Compose a source-relative pose into the map frame.

    The composition formula for SE(2):
        t_map = R(θ_src) t_rel + t_src
        θ_map = wrap(θ_src + θ_rel)

    Used for:
        - seeding a new node from the odometry delta on top of the last
          node's optimized pose
        - the live pose query between admissions

    Args:
        pose_rel_src: Pose expressed in the source frame.
        src_pose_in_map: Pose of the source frame in the map frame.

    Returns:
        The pose in the map frame.

    Examples:
        >>> src = Pose2D(x=0.0, y=0.0, angle=np.pi / 2)
        >>> rel = Pose2D(x=1.0, y=0.0, angle=0.0)
        >>> compose_into_map(rel, src)  # forward becomes +y
        Pose2D(x=0.0000, y=1.0000, angle=1.5708)
    """
    rotated = rotation_matrix(src_pose_in_map.angle) @ pose_rel_src.translation
    translation = rotated + src_pose_in_map.translation
    return Pose2D.from_translation(
        translation, wrap_angle(src_pose_in_map.angle + pose_rel_src.angle)
    )


def express_in_target(pose_in_map: Pose2D, target_pose_in_map: Pose2D) -> Pose2D:
    """
    Express a map-frame pose relative to a target frame.

    Inverse of compose_into_map:
        t_rel = R(-θ_target) (t_map - t_target)
        θ_rel = wrap(θ_map - θ_target)

    Used for:
        - the odometry delta since the last node (raw odometry relative to
          the odometry pose recorded at that node)
        - initial guesses for scan matching between two nodes

    Args:
        pose_in_map: Pose in the map (or odometry) frame.
        target_pose_in_map: Pose of the target frame in the same frame.

    Returns:
        The pose relative to the target frame.

    Examples:
        >>> target = Pose2D(x=1.0, y=1.0, angle=np.pi / 2)
        >>> pose = Pose2D(x=1.0, y=2.0, angle=np.pi / 2)
        >>> express_in_target(pose, target)
        Pose2D(x=1.0000, y=0.0000, angle=0.0000)
    """
    diff = pose_in_map.translation - target_pose_in_map.translation
    translation = rotation_matrix(-target_pose_in_map.angle) @ diff
    return Pose2D.from_translation(
        translation, wrap_angle(pose_in_map.angle - target_pose_in_map.angle)
    )


def transform_points(pose: Pose2D, points: np.ndarray) -> np.ndarray:
    """
    Transform 2D points from a node frame into the map frame.

    Applies points_map = R(θ) points + t, vectorized over all points.

    Args:
        pose: Pose of the node frame in the map frame.
        points: Points in the node frame, shape (N, 2).

    Returns:
        Transformed points, shape (N, 2).

    Raises:
        ValueError: If points does not have shape (N, 2).
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {points.shape}")
    if points.shape[0] == 0:
        return np.empty((0, 2), dtype=np.float64)

    R = rotation_matrix(pose.angle)
    return (R @ points.T).T + pose.translation


def relative_pose_array(pose_from: np.ndarray, pose_to: np.ndarray) -> np.ndarray:
    """
    Relative pose between two poses given as arrays [x, y, yaw].

    Array form of express_in_target(pose_to, pose_from), without the Pose2D
    validation; used inside solver residuals where poses are raw vectors
    that may temporarily carry unwrapped headings.

    Args:
        pose_from: Reference pose [x, y, yaw], shape (3,).
        pose_to: Target pose [x, y, yaw], shape (3,).

    Returns:
        Relative pose [dx, dy, dyaw], shape (3,), dyaw wrapped.
    """
    dx = pose_to[0] - pose_from[0]
    dy = pose_to[1] - pose_from[1]
    cos_yaw = np.cos(pose_from[2])
    sin_yaw = np.sin(pose_from[2])
    return np.array(
        [
            cos_yaw * dx + sin_yaw * dy,
            -sin_yaw * dx + cos_yaw * dy,
            wrap_angle(pose_to[2] - pose_from[2]),
        ],
        dtype=np.float64,
    )
