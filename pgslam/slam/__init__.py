"""2D pose-graph SLAM engine.

Main components:
    - Pose2D, PgNode, PoseFactor: Core data structures
    - compose_into_map, express_in_target: SE(2) frame algebra
    - SlamConfig: Engine configuration
    - OdometryTracker, NodeAdmissionPolicy: When scans become nodes
    - ConstraintBuilder: Successive, odometry and loop-closure factors
    - IcpScanMatcher: Point-to-line / point-to-point ICP scan matching
    - OptimizationOrchestrator: Online / offline solver scheduling
    - SlamEngine: The streaming entry point

The nonlinear solver lives in pgslam.estimators.

Example usage:
    >>> import numpy as np
    >>> from pgslam.slam import SlamConfig, SlamEngine
    >>> engine = SlamEngine(SlamConfig(optimization_mode="offline"))
    >>> ranges = np.full(181, 5.0)
    >>> engine.observe_odometry([0.6, 0.0], 0.0)
    >>> engine.observe_laser(ranges, 0.1, 10.0, -np.pi / 2, np.pi / 2)
    True
    >>> engine.finalize()

Author: Navigation Engineer
Date: 2024
"""

from .admission import NodeAdmissionPolicy
from .config import OptimizationMode, SlamConfig
from .constraints import ConstraintBuilder
from .engine import SlamEngine
from .export import read_node_poses, write_node_poses
from .factors import (
    create_odometry_factor,
    create_prior_factor,
    create_scan_match_factor,
    information_from_covariance,
    information_from_sigmas,
    motion_model_sigmas,
)
from .laser import laser_scan_to_point_cloud
from .odometry import OdometryTracker
from .orchestrator import OptimizationOrchestrator
from .pose_graph import PoseGraphStore
from .scan_matching import (
    IcpScanMatcher,
    ScanMatcher,
    ScanMatchResult,
    align_point_to_line,
    align_svd,
    compute_icp_covariance,
    estimate_normals,
    icp_point_to_line,
    icp_point_to_point,
)
from .se2 import compose_into_map, express_in_target, rotation_matrix, transform_points
from .types import FactorKind, PgNode, PointCloud2D, Pose2D, PoseFactor

__all__ = [
    # Types
    "Pose2D",
    "PgNode",
    "PoseFactor",
    "FactorKind",
    "PointCloud2D",
    # Frame algebra
    "compose_into_map",
    "express_in_target",
    "transform_points",
    "rotation_matrix",
    # Configuration
    "SlamConfig",
    "OptimizationMode",
    # Odometry and admission
    "OdometryTracker",
    "NodeAdmissionPolicy",
    "laser_scan_to_point_cloud",
    # Factors
    "create_prior_factor",
    "create_odometry_factor",
    "create_scan_match_factor",
    "information_from_sigmas",
    "information_from_covariance",
    "motion_model_sigmas",
    # Scan matching
    "ScanMatcher",
    "ScanMatchResult",
    "IcpScanMatcher",
    "icp_point_to_point",
    "icp_point_to_line",
    "align_svd",
    "align_point_to_line",
    "estimate_normals",
    "compute_icp_covariance",
    # Graph
    "ConstraintBuilder",
    "PoseGraphStore",
    "OptimizationOrchestrator",
    "SlamEngine",
    # Export
    "write_node_poses",
    "read_node_poses",
]
