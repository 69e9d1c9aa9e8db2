"""Shared fixtures for pgslam.slam tests: stub scan matchers and solvers."""

import numpy as np
import pytest

from pgslam.estimators import IncrementalPoseGraphSolver, SolverError
from pgslam.slam import PgNode, Pose2D, ScanMatchResult


class StubScanMatcher:
    """Deterministic scan matcher that records every call.

    By default every match converges and returns the initial guess. A
    fixed ``pose`` overrides the returned relative pose; ``converged`` may
    be a bool or a callable (call_index, source, target, guess) -> bool.
    """

    def __init__(self, converged=True, pose=None, covariance=None):
        self.converged = converged
        self.pose = pose
        self.covariance = np.eye(3) * 0.01 if covariance is None else covariance
        self.calls = []

    def match(self, source_cloud, target_cloud, initial_relative_pose):
        index = len(self.calls)
        self.calls.append((source_cloud, target_cloud, initial_relative_pose))
        if callable(self.converged):
            converged = self.converged(index, source_cloud, target_cloud, initial_relative_pose)
        else:
            converged = self.converged
        pose = initial_relative_pose if self.pose is None else self.pose
        return ScanMatchResult(converged=converged, relative_pose=pose, covariance=self.covariance)


class CountingSolver(IncrementalPoseGraphSolver):
    """IncrementalPoseGraphSolver that records how it is called.

    ``fail_on_update`` makes the n-th update call (0-based) raise
    SolverError; ``fail_on_batch`` makes every batch_solve raise.
    """

    def __init__(self, fail_on_update=None, fail_on_batch=False):
        super().__init__()
        self.update_calls = []
        self.batch_calls = []
        self.reset_calls = 0
        self.fail_on_update = fail_on_update
        self.fail_on_batch = fail_on_batch

    def update(self, new_factors, new_initial_estimates):
        new_factors = list(new_factors)
        index = len(self.update_calls)
        self.update_calls.append((new_factors, dict(new_initial_estimates)))
        if self.fail_on_update is not None and index == self.fail_on_update:
            raise SolverError("injected update failure")
        super().update(new_factors, new_initial_estimates)

    def batch_solve(self, all_factors, all_initial_estimates):
        all_factors = list(all_factors)
        self.batch_calls.append((all_factors, dict(all_initial_estimates)))
        if self.fail_on_batch:
            raise SolverError("injected batch failure")
        super().batch_solve(all_factors, all_initial_estimates)

    def reset(self):
        self.reset_calls += 1
        super().reset()


def build_node(node_id, x=0.0, y=0.0, angle=0.0, odom=None, cloud=None):
    """PgNode with a small default cloud and odometry equal to its pose."""
    pose = Pose2D(x, y, angle)
    if cloud is None:
        cloud = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    return PgNode(
        id=node_id,
        estimated_pose=pose,
        point_cloud=cloud,
        odom_pose=pose if odom is None else odom,
    )


@pytest.fixture
def stub_matcher():
    return StubScanMatcher


@pytest.fixture
def counting_solver():
    return CountingSolver


@pytest.fixture
def make_node():
    return build_node
