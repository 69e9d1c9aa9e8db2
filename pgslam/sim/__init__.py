"""Synthetic sensor data for exercising the SLAM engine."""

from .laser_simulation import ray_segment_intersection, simulate_laser_ranges, square_room_walls

__all__ = ["ray_segment_intersection", "simulate_laser_ranges", "square_room_walls"]
