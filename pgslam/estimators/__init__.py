"""Nonlinear least-squares estimators for pose-graph optimization."""

from .factor_graph import Factor, FactorGraph, SolverError
from .pose_graph_solver import IncrementalPoseGraphSolver, pose_factor_to_graph_factor

__all__ = [
    "Factor",
    "FactorGraph",
    "SolverError",
    "IncrementalPoseGraphSolver",
    "pose_factor_to_graph_factor",
]
