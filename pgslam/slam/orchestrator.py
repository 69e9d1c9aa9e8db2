"""Optimization scheduling for the pose graph.

ONLINE: every admission submits its factors and seed pose to the solver
and every node's pose is refreshed from the solver's estimates.

OFFLINE: admissions only store nodes at their odometry seeds. finalize()
rebuilds all factors against the stored graph, runs one batch solve and
publishes the result. A second finalize() does nothing.

The store is only changed after the solver call has returned, so a
solver failure leaves the nodes, factors and poses as they were.

Author: Navigation Engineer
Date: 2024
"""

import logging
from typing import Dict, List

from .config import SlamConfig
from .constraints import ConstraintBuilder
from .factors import create_prior_factor
from .pose_graph import PoseGraphStore
from .types import PgNode, Pose2D, PoseFactor

logger = logging.getLogger(__name__)


class OptimizationOrchestrator:
    """
    Runs the solver according to the configured optimization mode.

    Args:
        config: Engine configuration (mode, prior sigmas).
        builder: Constraint builder for non-root nodes.
        solver: Object implementing update / batch_solve / estimate_all /
            reset.
        graph: Pose graph store owned by the engine.
    """

    def __init__(self, config: SlamConfig, builder: ConstraintBuilder, solver, graph: PoseGraphStore):
        self.config = config
        self.builder = builder
        self.solver = solver
        self.graph = graph
        self.offline_run_once = False
        self.finalized = False

    def prior_factor(self) -> PoseFactor:
        """Prior anchoring node 0 at the configured global origin."""
        return create_prior_factor(0, self.config.initial_pose, self.config)

    def admit(self, node: PgNode) -> None:
        """
        Add a newly admitted node to the graph.

        Raises:
            SolverError: If the online solver update fails; the graph is
                unchanged.
            ValueError: If the solver comes back without an estimate for
                every node. The solver is rebuilt from the stored graph
                before the error propagates.
        """
        if not self.config.online:
            self.graph.append(node)
            return

        if node.id == 0:
            factors = [self.prior_factor()]
        else:
            factors = self.builder.build(node, self.graph.nodes)

        self.solver.update(factors, {node.id: node.estimated_pose})
        estimates = self.solver.estimate_all()
        try:
            self._check_estimates(estimates, node.id)
        except ValueError:
            self._resync_solver()
            raise

        self.graph.append(node, factors)
        self.graph.update_poses(estimates)

    def finalize(self) -> None:
        """
        Finish the run. Idempotent.

        Online: latches the finalized flag only. Offline: one batch solve
        over factors rebuilt for the whole graph.

        Raises:
            SolverError: If the batch solve fails; the graph is unchanged
                and finalize() may be retried.
        """
        if self.config.online:
            self.finalized = True
            return
        if self.offline_run_once:
            return

        nodes = self.graph.nodes
        factors: List[PoseFactor] = []
        if nodes:
            factors.append(self.prior_factor())
            for k in range(1, len(nodes)):
                factors.extend(self.builder.build(nodes[k], nodes[:k]))

            self.solver.reset()
            self.solver.batch_solve(factors, self.graph.current_poses())
            estimates = self.solver.estimate_all()
            self._check_estimates(estimates, len(nodes) - 1)

            self.graph.set_factors(factors)
            self.graph.update_poses(estimates)
            logger.info("Offline optimization: %d nodes, %d factors", len(nodes), len(factors))

        self.offline_run_once = True
        self.finalized = True

    def _check_estimates(self, estimates: Dict[int, Pose2D], last_id: int) -> None:
        missing = [i for i in range(last_id + 1) if i not in estimates]
        if missing:
            raise ValueError(f"solver returned no estimate for nodes {missing}")

    def _resync_solver(self) -> None:
        """Rebuild the solver from the factors and poses held by the store."""
        logger.warning("Resynchronizing solver with %d stored nodes", len(self.graph))
        self.solver.reset()
        if len(self.graph):
            self.solver.batch_solve(self.graph.factors, self.graph.current_poses())
