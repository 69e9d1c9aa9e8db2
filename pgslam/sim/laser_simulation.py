"""Planar laser range simulation for synthetic SLAM runs.

Generates the raw range arrays a 2D LiDAR driver would publish, by
ray-casting against a set of wall segments. Only the closest wall along
each ray is returned, so near walls occlude far ones. Rays that hit
nothing within range report range_max, which the engine drops.

Author: Navigation Engineer
Date: 2024
"""

from typing import List, Optional, Tuple

import numpy as np

from ..slam.se2 import rotation_matrix
from ..slam.types import Pose2D

Wall = Tuple[np.ndarray, np.ndarray]


def ray_segment_intersection(
    ray_origin: np.ndarray,
    ray_direction: np.ndarray,
    segment_start: np.ndarray,
    segment_end: np.ndarray,
) -> float:
    """Distance along a ray to a line segment.

    Uses parametric line equations to find the intersection:
        Ray: P = origin + t * direction (t >= 0)
        Segment: Q = start + s * (end - start) (0 <= s <= 1)

    Args:
        ray_origin: Ray starting point [x, y].
        ray_direction: Unit direction vector [dx, dy].
        segment_start: Segment start point [x, y].
        segment_end: Segment end point [x, y].

    Returns:
        Distance t to the intersection, or inf if the ray misses the
        segment, is parallel to it, or the segment is degenerate.
    """
    o = np.asarray(ray_origin, dtype=float)
    d = np.asarray(ray_direction, dtype=float)
    s_start = np.asarray(segment_start, dtype=float)
    s_dir = np.asarray(segment_end, dtype=float) - s_start

    if np.dot(s_dir, s_dir) < 1e-10:
        return float("inf")

    # Cramer's rule on [d | -s_dir] [t; u] = s_start - o
    det = d[0] * s_dir[1] - d[1] * s_dir[0]
    if abs(det) < 1e-10:
        return float("inf")

    diff = s_start - o
    t = (diff[0] * s_dir[1] - diff[1] * s_dir[0]) / det
    u = (diff[0] * d[1] - diff[1] * d[0]) / det

    if t < 0 or u < 0 or u > 1:
        return float("inf")
    return float(t)


def simulate_laser_ranges(
    base_pose: Pose2D,
    walls: List[Wall],
    num_rays: int = 181,
    angle_min: float = -np.pi / 2,
    angle_max: float = np.pi / 2,
    range_max: float = 10.0,
    noise_std: float = 0.0,
    laser_offset: Tuple[float, float] = (0.2, 0.0),
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Ray-cast a laser scan from a robot pose.

    Ray i has bearing angle_min + i * (angle_max - angle_min) / (num_rays - 1)
    relative to the robot heading, and starts at the laser position
    base + R(θ) laser_offset.

    Args:
        base_pose: Robot base pose in the world frame.
        walls: Wall segments as (start, end) point pairs.
        num_rays: Number of rays.
        angle_min: Bearing of the first ray (radians).
        angle_max: Bearing of the last ray (radians).
        range_max: Sensor maximum range (meters).
        noise_std: Standard deviation of Gaussian range noise (meters).
        laser_offset: Laser position in the base frame (meters).
        rng: Random generator for the range noise.

    Returns:
        Ranges, shape (num_rays,). Misses are reported as range_max.

    Example:
        >>> walls = square_room_walls(10.0)
        >>> ranges = simulate_laser_ranges(Pose2D(5.0, 5.0, 0.0), walls)
        >>> ranges.shape
        (181,)
    """
    if num_rays < 2:
        raise ValueError(f"num_rays must be at least 2, got {num_rays}")
    if rng is None:
        rng = np.random.default_rng()

    origin = base_pose.translation + rotation_matrix(base_pose.angle) @ np.asarray(
        laser_offset, dtype=float
    )
    bearings = np.linspace(angle_min, angle_max, num_rays)

    ranges = np.full(num_rays, range_max, dtype=np.float64)
    for ray_idx, bearing in enumerate(bearings):
        angle = base_pose.angle + bearing
        ray_dir = np.array([np.cos(angle), np.sin(angle)])

        closest = range_max
        for wall_start, wall_end in walls:
            distance = ray_segment_intersection(origin, ray_dir, wall_start, wall_end)
            if distance < closest:
                closest = distance

        if closest < range_max:
            if noise_std > 0:
                closest = float(np.clip(closest + rng.normal(0.0, noise_std), 0.0, range_max))
            ranges[ray_idx] = closest

    return ranges


def square_room_walls(size: float = 10.0, with_pillar: bool = True) -> List[Wall]:
    """
    Walls of a square room with its corner at the origin.

    Args:
        size: Side length (meters).
        with_pillar: Add a square pillar in the middle so scans taken on
            opposite sides of the room are distinguishable.

    Returns:
        List of (start, end) wall segments.
    """
    corners = [
        np.array([0.0, 0.0]),
        np.array([size, 0.0]),
        np.array([size, size]),
        np.array([0.0, size]),
    ]
    walls = [(corners[i], corners[(i + 1) % 4]) for i in range(4)]

    if with_pillar:
        c = size / 2.0
        h = size / 10.0
        pillar = [
            np.array([c - h, c - h]),
            np.array([c + h, c - h]),
            np.array([c + h, c + h]),
            np.array([c - h, c + h]),
        ]
        walls.extend((pillar[i], pillar[(i + 1) % 4]) for i in range(4))

    return walls
