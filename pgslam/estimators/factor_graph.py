"""
Factor Graph Optimization for batch state estimation.

This module implements nonlinear least-squares optimization over a factor
graph: variables are stacked state vectors, factors are residual functions
weighted by an information matrix, and the MAP estimate minimizes

    F(X) = Σ rᵢ(X)ᵀ Λᵢ rᵢ(X)

Implements:
    - Gauss-Newton: (JᵀΛJ) δx = -JᵀΛr, x ← x + δx
    - Levenberg-Marquardt: (JᵀΛJ + μI) δx = -JᵀΛr with gain-ratio damping

A rank-deficient normal system (e.g. a variable that no factor touches) is
solved with a least-squares pseudo-inverse step, which leaves the
unconstrained directions where they are.
"""

import logging
from typing import Callable, Dict, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class SolverError(RuntimeError):
    """Raised when optimization cannot produce a finite estimate."""


class Factor:
    """
    Factor in a factor graph representing a constraint or measurement.

    A factor encodes a probabilistic constraint on a subset of variables.
    For Gaussian factors, this is equivalent to minimizing a squared residual.

    Attributes:
        variable_ids: List of variable IDs that this factor connects
        residual_func: Function computing residual r(x_subset)
        jacobian_func: Function computing Jacobian ∂r/∂x
        information: Information matrix (inverse covariance) for this factor
    """

    def __init__(
        self,
        variable_ids: List[int],
        residual_func: Callable[[List[np.ndarray]], np.ndarray],
        jacobian_func: Callable[[List[np.ndarray]], List[np.ndarray]],
        information: np.ndarray,
    ):
        """
        Initialize Factor.

        Args:
            variable_ids: List of variable IDs connected by this factor.
            residual_func: Function computing residual r(x_vars) where x_vars
                is a list of variable values.
            jacobian_func: Function computing Jacobian [∂r/∂x₁, ∂r/∂x₂, ...].
            information: Information matrix Λ (inverse of covariance matrix).
        """
        self.variable_ids = list(variable_ids)
        self.residual_func = residual_func
        self.jacobian_func = jacobian_func
        self.information = np.asarray(information, dtype=float)

    def compute_error(self, variables: Dict[int, np.ndarray]) -> float:
        """
        Compute squared error for this factor.

        Implements: error = rᵀ Λ r where r is the residual.

        Args:
            variables: Dictionary mapping variable ID to value.

        Returns:
            Squared error (scalar).
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = self.residual_func(x_vars)
        return float(r.T @ self.information @ r)

    def linearize(
        self, variables: Dict[int, np.ndarray]
    ) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Linearize the factor around current variable values.

        Args:
            variables: Dictionary mapping variable ID to value.

        Returns:
            Tuple of (residual, jacobians) where jacobians is a list
            of Jacobian matrices for each connected variable.
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = self.residual_func(x_vars)
        J = self.jacobian_func(x_vars)
        return r, J


class FactorGraph:
    """
    Factor Graph for batch state estimation.

    Represents a graph where nodes are variables (states) and edges are
    factors (constraints/measurements). Optimization finds the Maximum
    A Posteriori (MAP) estimate of all variables.

    Attributes:
        variables: Dictionary mapping variable ID to current value
        factors: List of factors in the graph
        variable_dims: Dictionary mapping variable ID to dimension
    """

    def __init__(self):
        """Initialize empty Factor Graph."""
        self.variables: Dict[int, np.ndarray] = {}
        self.factors: List[Factor] = []
        self.variable_dims: Dict[int, int] = {}

    def add_variable(self, var_id: int, initial_value: np.ndarray) -> None:
        """
        Add a variable to the graph.

        Args:
            var_id: Unique identifier for this variable.
            initial_value: Initial value for the variable (n,).

        Raises:
            ValueError: If the variable already exists.
        """
        if var_id in self.variables:
            raise ValueError(f"Variable {var_id} already in graph")
        self.variables[var_id] = np.asarray(initial_value, dtype=float).copy()
        self.variable_dims[var_id] = len(initial_value)

    def add_factor(self, factor: Factor) -> None:
        """
        Add a factor to the graph.

        Args:
            factor: Factor connecting variables.

        Raises:
            ValueError: If any variable ID in factor is not in graph.
        """
        for vid in factor.variable_ids:
            if vid not in self.variables:
                raise ValueError(f"Variable {vid} not in graph")
        self.factors.append(factor)

    def clear(self) -> None:
        """Remove all variables and factors."""
        self.variables = {}
        self.factors = []
        self.variable_dims = {}

    def compute_error(self) -> float:
        """
        Compute total error over all factors.

        Sum of squared residuals:
            error = Σ rᵢᵀ Λᵢ rᵢ

        Returns:
            Total squared error.
        """
        total_error = 0.0
        for factor in self.factors:
            total_error += factor.compute_error(self.variables)
        return total_error

    def optimize(
        self,
        method: str = "gauss_newton",
        max_iterations: int = 20,
        tol: float = 1e-6,
        **kwargs,
    ) -> Tuple[Dict[int, np.ndarray], List[float]]:
        """
        Optimize the factor graph to find MAP estimate.

        Args:
            method: Optimization method. One of:
                - "gauss_newton": Standard Gauss-Newton
                - "levenberg_marquardt" or "lm": LM method
            max_iterations: Maximum number of iterations.
            tol: Convergence tolerance on error change.
            **kwargs: Additional method-specific parameters:
                - initial_mu: Initial damping for LM (default: 1e-3)

        Returns:
            Tuple of (optimized_variables, error_history).

        Raises:
            ValueError: If method is not supported.
            SolverError: If the error or any variable becomes non-finite.
        """
        if not self.variables:
            return {}, [0.0]
        if method == "gauss_newton":
            result = self._gauss_newton(max_iterations, tol)
        elif method in ("levenberg_marquardt", "lm"):
            initial_mu = kwargs.get("initial_mu", 1e-3)
            result = self._levenberg_marquardt(max_iterations, tol, initial_mu)
        else:
            raise ValueError(f"Unknown method: {method}")

        variables, error_history = result
        if not np.isfinite(error_history[-1]):
            raise SolverError(f"{method} diverged: final error {error_history[-1]}")
        for vid, value in variables.items():
            if not np.all(np.isfinite(value)):
                raise SolverError(f"{method} produced a non-finite value for variable {vid}")
        logger.debug(
            "%s: %d iterations, error %.6g -> %.6g",
            method,
            len(error_history) - 1,
            error_history[0],
            error_history[-1],
        )
        return variables, error_history

    def _gauss_newton(
        self, max_iterations: int, tol: float
    ) -> Tuple[Dict[int, np.ndarray], List[float]]:
        """
        Gauss-Newton optimization.

        Solves the linearized system: (JᵀΛJ) δx = -JᵀΛr
        at each iteration and updates: x ← x + δx

        Args:
            max_iterations: Maximum iterations.
            tol: Convergence tolerance.

        Returns:
            Tuple of (optimized_variables, error_history).
        """
        error_history = [self.compute_error()]

        for iteration in range(max_iterations):
            H, b = self._build_linearized_system()

            # Solve for update: H δx = b
            try:
                delta_x = np.linalg.solve(H, b)
            except np.linalg.LinAlgError:
                # Singular matrix - use pseudo-inverse
                delta_x = np.linalg.lstsq(H, b, rcond=None)[0]

            self._update_variables(delta_x)

            current_error = self.compute_error()
            error_history.append(current_error)

            if not np.isfinite(current_error):
                break
            if abs(error_history[-2] - error_history[-1]) < tol:
                break

        return self.variables.copy(), error_history

    def _levenberg_marquardt(
        self, max_iterations: int, tol: float, initial_mu: float = 1e-3
    ) -> Tuple[Dict[int, np.ndarray], List[float]]:
        """
        Levenberg-Marquardt optimization.

        Solves (JᵀΛJ + μI) δx = -JᵀΛr and adapts μ from the gain ratio
        between actual and predicted error reduction. The method
        interpolates between gradient descent (large μ) and Gauss-Newton
        (small μ).

        Args:
            max_iterations: Maximum iterations.
            tol: Convergence tolerance.
            initial_mu: Initial damping parameter (default 1e-3).

        Returns:
            Tuple of (optimized_variables, error_history).
        """
        error_history = [self.compute_error()]

        mu = initial_mu
        nu = 2.0  # Factor for increasing mu on rejected steps

        var_ids_sorted = sorted(self.variables.keys())
        total_dim = sum(self.variable_dims[vid] for vid in var_ids_sorted)

        for iteration in range(max_iterations):
            H, b = self._build_linearized_system()
            current_error = error_history[-1]

            H_damped = H + mu * np.eye(total_dim)

            try:
                d_lm = np.linalg.solve(H_damped, b)
            except np.linalg.LinAlgError:
                d_lm = np.linalg.lstsq(H_damped, b, rcond=None)[0]

            old_vars = {k: v.copy() for k, v in self.variables.items()}

            self._update_variables(d_lm)
            new_error = self.compute_error()

            # Gain ratio: actual reduction over the reduction predicted by the
            # quadratic model, L(0) - L(d) = 0.5 dᵀ(μ d + b)
            actual_reduction = current_error - new_error
            predicted_reduction = 0.5 * np.dot(d_lm, mu * d_lm + b)

            if predicted_reduction > 0 and np.isfinite(new_error):
                g = actual_reduction / predicted_reduction
            else:
                g = 0.0

            if g > 0:
                error_history.append(new_error)
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * g - 1.0) ** 3)
                nu = 2.0
            else:
                self.variables = old_vars
                error_history.append(current_error)
                mu = mu * nu
                nu = 2.0 * nu

            if abs(error_history[-2] - error_history[-1]) < tol and g > 0:
                break
            if np.linalg.norm(d_lm) < tol:
                break

        return self.variables.copy(), error_history

    def _build_linearized_system(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build linearized system Hδx = b for Gauss-Newton.

        H = JᵀΛJ (Hessian approximation)
        b = -JᵀΛr (gradient)

        Returns:
            Tuple of (H, b) for solving Hδx = b.
        """
        var_ids_sorted = sorted(self.variables.keys())
        total_dim = sum(self.variable_dims[vid] for vid in var_ids_sorted)

        H = np.zeros((total_dim, total_dim))
        b = np.zeros(total_dim)

        var_indices = {}
        current_idx = 0
        for vid in var_ids_sorted:
            dim = self.variable_dims[vid]
            var_indices[vid] = (current_idx, current_idx + dim)
            current_idx += dim

        for factor in self.factors:
            r, jacobians = factor.linearize(self.variables)
            Lambda = factor.information

            for i, vid_i in enumerate(factor.variable_ids):
                J_i = jacobians[i]
                start_i, end_i = var_indices[vid_i]

                # Gradient contribution: -JᵀΛr
                b[start_i:end_i] -= J_i.T @ Lambda @ r

                for j, vid_j in enumerate(factor.variable_ids):
                    J_j = jacobians[j]
                    start_j, end_j = var_indices[vid_j]

                    # Hessian contribution: JᵀΛJ
                    H[start_i:end_i, start_j:end_j] += J_i.T @ Lambda @ J_j

        return H, b

    def _update_variables(self, delta_x: np.ndarray) -> None:
        """
        Update all variables by adding delta.

        Args:
            delta_x: Stacked update vector for all variables.
        """
        var_ids_sorted = sorted(self.variables.keys())
        current_idx = 0
        for vid in var_ids_sorted:
            dim = self.variable_dims[vid]
            self.variables[vid] = self.variables[vid] + delta_x[current_idx : current_idx + dim]
            current_idx += dim
