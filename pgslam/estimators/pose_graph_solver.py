"""
Pose-graph solver built on the dense factor-graph optimizer.

IncrementalPoseGraphSolver implements the solver contract the SLAM engine
consumes:

    update(new_factors, new_initial_estimates)     incremental step
    batch_solve(all_factors, all_initial_estimates) one-shot full solve
    estimate_all() -> Dict[int, Pose2D]            current estimates
    reset()                                         drop everything

Pose variables are [x, y, θ] vectors. Each PoseFactor becomes a Factor
whose residual is the measured pose minus the predicted pose (heading
difference wrapped). "Incremental" here means the graph persists between
calls and each update re-optimizes from the previous solution; the
linear algebra itself is dense.

Every call is transactional: if optimization fails, variables and
factors are restored to their state before the call and SolverError is
raised.
"""

import copy
import logging
from typing import Dict, Iterable, List, Mapping

import numpy as np

from ..slam.se2 import relative_pose_array
from ..slam.types import FactorKind, Pose2D, PoseFactor
from ..utils.angles import wrap_angle, wrap_angle_array
from .factor_graph import Factor, FactorGraph, SolverError

logger = logging.getLogger(__name__)


def _numerical_jacobians(residual_func, x_vars, epsilon: float = 1e-7) -> List[np.ndarray]:
    """Forward-difference Jacobians of residual_func w.r.t. each variable."""
    r_base = residual_func(x_vars)
    jacobians = []
    for k, x in enumerate(x_vars):
        J = np.zeros((r_base.shape[0], x.shape[0]))
        for i in range(x.shape[0]):
            perturbed = [v.copy() for v in x_vars]
            perturbed[k][i] += epsilon
            J[:, i] = (residual_func(perturbed) - r_base) / epsilon
        jacobians.append(J)
    return jacobians


def pose_factor_to_graph_factor(factor: PoseFactor, epsilon: float = 1e-7) -> Factor:
    """
    Convert a PoseFactor into a residual/Jacobian Factor.

    Residuals (heading component wrapped to (-π, π]):
        PRIOR:              r = z - x_i
        ODOMETRY / SCAN:    r = z - (x_from⁻¹ ⊕ x_to)

    Args:
        factor: Pose-graph factor.
        epsilon: Finite-difference step for the relative-pose Jacobians.

    Returns:
        Factor over the node ids referenced by the PoseFactor.
    """
    measured = factor.measured_relative_pose.to_array()
    information = np.array(factor.information)

    if factor.kind is FactorKind.PRIOR:

        def prior_residual(x_vars):
            residual = measured - x_vars[0]
            residual[2] = wrap_angle(residual[2])
            return residual

        def prior_jacobian(x_vars):
            # r = z - x, so ∂r/∂x = -I
            return [-np.eye(3)]

        return Factor([factor.from_id], prior_residual, prior_jacobian, information)

    def between_residual(x_vars):
        residual = measured - relative_pose_array(x_vars[0], x_vars[1])
        residual[2] = wrap_angle(residual[2])
        return residual

    def between_jacobian(x_vars):
        return _numerical_jacobians(between_residual, x_vars, epsilon)

    return Factor(
        [factor.from_id, factor.to_id], between_residual, between_jacobian, information
    )


class IncrementalPoseGraphSolver:
    """
    Pose-graph solver with persistent state between updates.

    Attributes:
        method: "gauss_newton" or "levenberg_marquardt".
        max_iterations: Optimizer iteration cap per call.
        tol: Convergence tolerance on the error change.

    Examples:
        >>> from pgslam.slam import SlamConfig, create_prior_factor
        >>> prior = create_prior_factor(0, Pose2D.identity(), SlamConfig())
        >>> solver = IncrementalPoseGraphSolver()
        >>> solver.update([prior], {0: Pose2D.identity()})
        >>> solver.estimate_all()[0]
        Pose2D(x=0.0000, y=0.0000, angle=0.0000)
    """

    def __init__(
        self,
        method: str = "gauss_newton",
        max_iterations: int = 20,
        tol: float = 1e-9,
    ):
        if method not in ("gauss_newton", "levenberg_marquardt", "lm"):
            raise ValueError(f"Unknown method: {method}")
        self.method = method
        self.max_iterations = max_iterations
        self.tol = tol
        self.graph = FactorGraph()
        self.num_solves = 0

    @property
    def num_factors(self) -> int:
        return len(self.graph.factors)

    def reset(self) -> None:
        """Drop all variables and factors."""
        self.graph.clear()

    def update(
        self,
        new_factors: Iterable[PoseFactor],
        new_initial_estimates: Mapping[int, Pose2D],
    ) -> None:
        """
        Add variables and factors, then re-optimize the whole graph.

        Args:
            new_factors: Factors to add.
            new_initial_estimates: Seed poses for variables not yet in the
                graph.

        Raises:
            SolverError: If a factor references an unknown variable, a
                variable is added twice, or optimization fails. The solver
                state is unchanged in that case.
        """
        saved = self._snapshot()
        try:
            self._add(new_factors, new_initial_estimates)
            self._optimize()
        except Exception:
            self._restore(saved)
            raise

    def batch_solve(
        self,
        all_factors: Iterable[PoseFactor],
        all_initial_estimates: Mapping[int, Pose2D],
    ) -> None:
        """
        Replace the graph with the given factors and estimates and solve.

        Raises:
            SolverError: As for update(); the previous graph is restored.
        """
        saved = self._snapshot()
        try:
            self.graph = FactorGraph()
            self._add(all_factors, all_initial_estimates)
            self._optimize()
        except Exception:
            self._restore(saved)
            raise

    def estimate_all(self) -> Dict[int, Pose2D]:
        """Current estimate of every variable, keyed by node id."""
        return {
            vid: Pose2D.from_array(value) for vid, value in sorted(self.graph.variables.items())
        }

    def _add(
        self,
        factors: Iterable[PoseFactor],
        estimates: Mapping[int, Pose2D],
    ) -> None:
        for vid, pose in sorted(estimates.items()):
            if vid in self.graph.variables:
                raise SolverError(f"Variable {vid} already in graph")
            self.graph.add_variable(vid, pose.to_array())
        for factor in factors:
            try:
                self.graph.add_factor(pose_factor_to_graph_factor(factor))
            except ValueError as exc:
                raise SolverError(str(exc)) from exc

    def _optimize(self) -> None:
        self.graph.optimize(
            method=self.method, max_iterations=self.max_iterations, tol=self.tol
        )
        self.num_solves += 1
        # Keep stored headings normalized between calls
        ids = list(self.graph.variables)
        headings = wrap_angle_array([self.graph.variables[vid][2] for vid in ids])
        for vid, heading in zip(ids, headings):
            value = np.array(self.graph.variables[vid], dtype=float)
            value[2] = heading
            self.graph.variables[vid] = value

    def _snapshot(self) -> FactorGraph:
        saved = FactorGraph()
        saved.variables = {k: v.copy() for k, v in self.graph.variables.items()}
        saved.variable_dims = dict(self.graph.variable_dims)
        saved.factors = copy.copy(self.graph.factors)
        return saved

    def _restore(self, saved: FactorGraph) -> None:
        logger.debug("Rolling back pose graph solver to %d variables", len(saved.variables))
        self.graph = saved
