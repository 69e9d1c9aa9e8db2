"""
Utility functions shared across the SLAM engine.
"""

from .angles import angle_diff, angle_dist, wrap_angle, wrap_angle_array

__all__ = [
    'wrap_angle',
    'wrap_angle_array',
    'angle_diff',
    'angle_dist',
]
