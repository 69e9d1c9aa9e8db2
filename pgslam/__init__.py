"""2D pose-graph SLAM engine.

This package contains the components of an online / offline pose-graph
SLAM system for a robot with wheel odometry and a planar laser scanner:
- slam: frame algebra, node admission, constraint building, pose graph
  store, optimization orchestration and the SlamEngine entry point
- estimators: factor graph optimization and the pose graph solver adapter
- sim: laser scan simulation for synthetic runs
- utils: angle helpers
"""

__version__ = "0.1.0"
