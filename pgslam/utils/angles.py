"""
Angle wrapping and manipulation utilities.

Provides functions for handling headings and keeping them in the half-open
interval (-π, π]. Every pose produced by the frame algebra goes through
wrap_angle, so the boundary behaviour at ±π is part of the contract:
-π is reported as +π.
"""

import math
from typing import Union

import numpy as np

TWO_PI = 2.0 * math.pi


def wrap_angle(angle: float) -> float:
    """
    Wrap angle to the (-π, π] range.

    The reduction uses the IEEE remainder, so inputs at ±π land on +π.

    Args:
        angle: Angle in radians (can be any finite value)

    Returns:
        Wrapped angle in range (-π, π]

    Example:
        >>> round(wrap_angle(3.5 * np.pi), 6)  # 630° -> -90°
        -1.570796
        >>> wrap_angle(-np.pi)
        3.141592653589793
    """
    wrapped = math.remainder(float(angle), TWO_PI)
    if wrapped <= -math.pi:
        wrapped += TWO_PI
    return wrapped


def wrap_angle_array(angles: np.ndarray) -> np.ndarray:
    """
    Wrap array of angles to the (-π, π] range.

    Vectorized version of wrap_angle(). Angles already in range come back
    unchanged.

    Args:
        angles: Array of angles in radians

    Returns:
        Array of wrapped angles in range (-π, π]
    """
    angles = np.asarray(angles, dtype=np.float64)
    wrapped = angles - TWO_PI * np.round(angles / TWO_PI)
    wrapped[wrapped > np.pi] -= TWO_PI
    wrapped[wrapped <= -np.pi] += TWO_PI
    return wrapped


def angle_diff(angle1: Union[float, np.ndarray],
               angle2: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Compute the shortest signed angular difference angle1 - angle2.

    Args:
        angle1: First angle in radians
        angle2: Second angle in radians

    Returns:
        Signed difference wrapped to (-π, π]

    Example:
        >>> round(angle_diff(np.pi - 0.1, -np.pi + 0.1), 6)  # Nearly opposite
        -0.2
        >>> round(angle_diff(0.1, -0.1), 6)  # Small difference
        0.2
    """
    if isinstance(angle1, np.ndarray) or isinstance(angle2, np.ndarray):
        return wrap_angle_array(np.asarray(angle1) - np.asarray(angle2))
    else:
        return wrap_angle(angle1 - angle2)


def angle_dist(angle1: float, angle2: float) -> float:
    """
    Shortest unsigned angular distance between two headings.

    Used by the node admission policy to compare the current odometry
    heading with the heading recorded at the last node.

    Args:
        angle1: First angle in radians
        angle2: Second angle in radians

    Returns:
        Distance in [0, π]
    """
    return abs(angle_diff(angle1, angle2))
