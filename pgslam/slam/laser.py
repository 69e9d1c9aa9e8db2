"""Laser scan to point cloud conversion.

Converts a planar range scan (as delivered by a 2D LiDAR driver) into an
(N, 2) point cloud in the robot base frame. Points are ordered by ray
index; rays outside the sensor's valid range are dropped.

Author: Navigation Engineer
Date: 2024
"""

import math
from typing import Sequence, Tuple

import numpy as np

from .types import PointCloud2D

# Laser position in the robot base frame (meters)
DEFAULT_LASER_OFFSET = (0.2, 0.0)


def laser_scan_to_point_cloud(
    ranges: Sequence[float],
    range_min: float,
    range_max: float,
    angle_min: float,
    angle_max: float,
    laser_offset: Tuple[float, float] = DEFAULT_LASER_OFFSET,
) -> PointCloud2D:
    """
    Convert a range scan to a 2D point cloud in the base frame.

    Ray i has bearing angle_min + i * increment with
        increment = (angle_max - angle_min) / (n - 1)
    and produces the point
        (r_i cos a_i, r_i sin a_i) + laser_offset

    Rays with r >= range_max, r <= range_min or a non-finite range are
    dropped (max-range readings carry no surface).

    Args:
        ranges: Measured ranges (meters), one per ray.
        range_min: Minimum valid range (meters).
        range_max: Maximum valid range (meters).
        angle_min: Bearing of the first ray (radians).
        angle_max: Bearing of the last ray (radians).
        laser_offset: Laser position (x, y) in the base frame (meters).

    Returns:
        Point cloud, shape (N, 2). Empty (0, 2) for scans with fewer than
        two rays, a non-finite angular span, or no valid returns.

    Examples:
        >>> cloud = laser_scan_to_point_cloud(
        ...     [1.0, 1.0], 0.1, 10.0, 0.0, np.pi / 2, laser_offset=(0.0, 0.0)
        ... )
        >>> np.round(cloud, 6)
        array([[1., 0.],
               [0., 1.]])
    """
    ranges = np.asarray(ranges, dtype=np.float64).ravel()
    n = ranges.shape[0]
    span = angle_max - angle_min
    if n < 2 or not math.isfinite(span):
        return np.empty((0, 2), dtype=np.float64)

    increment = span / (n - 1)
    bearings = angle_min + increment * np.arange(n, dtype=np.float64)

    with np.errstate(invalid="ignore"):
        valid = np.isfinite(ranges) & (ranges < range_max) & (ranges > range_min)
    if not np.any(valid):
        return np.empty((0, 2), dtype=np.float64)

    r = ranges[valid]
    a = bearings[valid]
    points = np.column_stack([r * np.cos(a), r * np.sin(a)])
    return points + np.asarray(laser_offset, dtype=np.float64)
