"""Unit tests for pgslam.slam.orchestrator.OptimizationOrchestrator.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from pgslam.estimators import SolverError
from pgslam.slam import (
    ConstraintBuilder,
    FactorKind,
    OptimizationOrchestrator,
    PoseGraphStore,
    Pose2D,
    SlamConfig,
)

from .conftest import CountingSolver, StubScanMatcher, build_node


def _orchestrator(mode="online", solver=None, matcher=None, **overrides):
    config = SlamConfig(optimization_mode=mode, **overrides)
    builder = ConstraintBuilder(config, matcher or StubScanMatcher())
    graph = PoseGraphStore()
    return OptimizationOrchestrator(config, builder, solver or CountingSolver(), graph)


def _admit_chain(orchestrator, n, spacing=0.5):
    for i in range(n):
        orchestrator.admit(build_node(i, x=spacing * i))


class DroppingSolver(CountingSolver):
    """CountingSolver whose estimates omit the newest node after one update."""

    def __init__(self, drop_on_update):
        super().__init__()
        self.drop_on_update = drop_on_update

    def estimate_all(self):
        estimates = super().estimate_all()
        if len(self.update_calls) == self.drop_on_update + 1 and not self.batch_calls:
            estimates.pop(max(estimates))
        return estimates


class TestOnlineMode:
    """Test suite for per-admission optimization."""

    def test_root_node_gets_prior(self):
        orch = _orchestrator(initial_x=1.0, initial_y=2.0)
        orch.admit(build_node(0, x=1.0, y=2.0))

        factors, estimates = orch.solver.update_calls[0]
        assert [f.kind for f in factors] == [FactorKind.PRIOR]
        assert factors[0].measured_relative_pose == Pose2D(1.0, 2.0, 0.0)
        assert set(estimates) == {0}
        assert [f.kind for f in orch.graph.factors] == [FactorKind.PRIOR]

    def test_root_node_has_no_incoming_between_factors(self):
        orch = _orchestrator()
        _admit_chain(orch, 4)
        between = [f for f in orch.graph.factors if f.kind is not FactorKind.PRIOR]
        assert all(f.to_id != 0 for f in between)
        assert [f.from_id for f in orch.graph.factors if f.kind is FactorKind.PRIOR] == [0]

    def test_each_admission_updates_solver(self):
        orch = _orchestrator()
        _admit_chain(orch, 3)
        assert len(orch.solver.update_calls) == 3
        factors, estimates = orch.solver.update_calls[2]
        assert set(estimates) == {2}
        assert estimates[2] == Pose2D(1.0, 0.0, 0.0)
        assert [(f.from_id, f.to_id) for f in factors] == [(1, 2)]
        assert orch.solver.batch_calls == []

    def test_all_poses_resynced(self):
        # Every scan match reports 10 % less motion than the seed
        matcher = StubScanMatcher(pose=Pose2D(0.45, 0.0, 0.0))
        orch = _orchestrator(matcher=matcher, non_successive_scan_constraints=False)
        _admit_chain(orch, 3)
        poses = orch.graph.current_poses()
        np.testing.assert_allclose(poses[1].translation, [0.45, 0.0], atol=1e-6)
        np.testing.assert_allclose(poses[2].translation, [0.9, 0.0], atol=1e-6)

    def test_solver_failure_leaves_graph_unchanged(self):
        orch = _orchestrator(solver=CountingSolver(fail_on_update=2))
        _admit_chain(orch, 2)
        poses_before = orch.graph.current_poses()
        factors_before = orch.graph.num_factors

        with pytest.raises(SolverError):
            orch.admit(build_node(2, x=1.0))

        assert len(orch.graph) == 2
        assert orch.graph.num_factors == factors_before
        assert orch.graph.current_poses() == poses_before

    def test_missing_estimate_resyncs_solver(self):
        orch = _orchestrator(solver=DroppingSolver(drop_on_update=2))
        _admit_chain(orch, 2)
        poses_before = orch.graph.current_poses()
        factors_before = orch.graph.num_factors

        with pytest.raises(ValueError, match="no estimate"):
            orch.admit(build_node(2, x=1.0))

        assert len(orch.graph) == 2
        assert orch.graph.num_factors == factors_before
        assert orch.graph.current_poses() == poses_before
        assert orch.solver.reset_calls == 1
        assert set(orch.solver.estimate_all()) == {0, 1}
        assert orch.solver.num_factors == factors_before

        # The same node can be admitted again once the solver is back in step
        orch.admit(build_node(2, x=1.0))
        assert len(orch.graph) == 3
        assert set(orch.solver.estimate_all()) == {0, 1, 2}

    def test_finalize_only_latches(self):
        orch = _orchestrator()
        _admit_chain(orch, 2)
        orch.finalize()
        orch.finalize()
        assert orch.finalized
        assert not orch.offline_run_once
        assert orch.solver.batch_calls == []
        assert orch.solver.reset_calls == 0


class TestOfflineMode:
    """Test suite for the single batch solve at finalize()."""

    def test_admit_only_stores_nodes(self):
        orch = _orchestrator(mode="offline")
        _admit_chain(orch, 3)
        assert len(orch.graph) == 3
        assert orch.graph.num_factors == 0
        assert orch.solver.update_calls == []
        assert orch.builder.scan_matcher.calls == []

    def test_finalize_rebuilds_and_solves_once(self):
        orch = _orchestrator(mode="offline")
        _admit_chain(orch, 4)

        orch.finalize()

        assert orch.solver.reset_calls == 1
        assert len(orch.solver.batch_calls) == 1
        factors, estimates = orch.solver.batch_calls[0]
        assert set(estimates) == {0, 1, 2, 3}
        kinds = [f.kind for f in factors]
        assert kinds[0] is FactorKind.PRIOR
        # Three successive matches plus one loop closure (0 -> 2) for node 3
        assert kinds.count(FactorKind.SCAN_MATCH) == 4
        assert orch.graph.num_factors == len(factors)
        assert orch.offline_run_once
        assert orch.finalized

    def test_second_finalize_is_noop(self):
        orch = _orchestrator(mode="offline")
        _admit_chain(orch, 3)
        orch.finalize()
        poses = orch.graph.current_poses()
        matcher_calls = len(orch.builder.scan_matcher.calls)

        orch.finalize()

        assert len(orch.solver.batch_calls) == 1
        assert len(orch.builder.scan_matcher.calls) == matcher_calls
        assert orch.graph.current_poses() == poses

    def test_batch_failure_can_be_retried(self):
        solver = CountingSolver(fail_on_batch=True)
        orch = _orchestrator(mode="offline", solver=solver)
        _admit_chain(orch, 3)
        poses = orch.graph.current_poses()

        with pytest.raises(SolverError):
            orch.finalize()
        assert not orch.offline_run_once
        assert orch.graph.num_factors == 0
        assert orch.graph.current_poses() == poses

        solver.fail_on_batch = False
        orch.finalize()
        assert orch.offline_run_once
        assert len(solver.batch_calls) == 2

    def test_empty_graph(self):
        orch = _orchestrator(mode="offline")
        orch.finalize()
        assert orch.offline_run_once
        assert orch.solver.batch_calls == []

    def test_batch_result_published(self):
        matcher = StubScanMatcher(pose=Pose2D(0.45, 0.0, 0.0))
        orch = _orchestrator(
            mode="offline", matcher=matcher, non_successive_scan_constraints=False
        )
        _admit_chain(orch, 3)
        orch.finalize()
        poses = orch.graph.current_poses()
        np.testing.assert_allclose(poses[2].translation, [0.9, 0.0], atol=1e-6)
