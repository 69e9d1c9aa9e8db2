"""Pose-graph factors: motion model and information matrices.

This module builds the PoseFactor values the engine submits to the solver.

Factors encode constraints from:
    - Prior: anchors node 0 at the configured global origin
    - Odometry: relative motion between successive nodes (motion model)
    - Scan match: relative pose from aligning two nodes' point clouds,
      both between successive nodes and for loop closures

Motion model for odometry factors, with Δt the translation and Δθ the
rotation between two nodes:
    σ_t = trans_err_from_trans·‖Δt‖ + trans_err_from_rot·|Δθ|
    σ_r = rot_err_from_trans·‖Δt‖ + rot_err_from_rot·|Δθ|
    Λ = diag(1/σ_t², 1/σ_t², 1/σ_r²)

Author: Navigation Engineer
Date: 2024
"""

from typing import Tuple

import numpy as np

from .config import SlamConfig
from .types import FactorKind, Pose2D, PoseFactor


def information_from_sigmas(sigma_x: float, sigma_y: float, sigma_theta: float) -> np.ndarray:
    """
    Diagonal information matrix from standard deviations.

    Args:
        sigma_x: Standard deviation along x (m).
        sigma_y: Standard deviation along y (m).
        sigma_theta: Standard deviation of the heading (rad).

    Returns:
        diag(1/σ_x², 1/σ_y², 1/σ_θ²), shape (3, 3).

    Raises:
        ValueError: If any sigma is not positive and finite.
    """
    sigmas = np.array([sigma_x, sigma_y, sigma_theta], dtype=np.float64)
    if not np.all(np.isfinite(sigmas)) or np.any(sigmas <= 0):
        raise ValueError(f"sigmas must be positive and finite, got {sigmas}")
    return np.diag(1.0 / sigmas**2)


def information_from_covariance(covariance: np.ndarray) -> np.ndarray:
    """
    Invert a 3x3 covariance into an information matrix.

    Raises:
        ValueError: If the covariance is not a finite, symmetric,
            positive-definite 3x3 matrix.
    """
    cov = np.asarray(covariance, dtype=np.float64)
    if cov.shape != (3, 3):
        raise ValueError(f"covariance must have shape (3, 3), got {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise ValueError("covariance must be finite")
    if not np.allclose(cov, cov.T):
        raise ValueError("covariance must be symmetric")
    try:
        np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        raise ValueError("covariance must be positive-definite")
    info = np.linalg.inv(cov)
    # Symmetrize against round-off in the inverse
    return 0.5 * (info + info.T)


def motion_model_sigmas(delta: Pose2D, config: SlamConfig) -> Tuple[float, float]:
    """
    Translation and rotation standard deviations of an odometry delta.

    Args:
        delta: Relative motion between two nodes.
        config: Motion-model coefficients and the σ floor.

    Returns:
        (σ_t, σ_r), each at least config.min_odometry_std.
    """
    trans = float(np.linalg.norm(delta.translation))
    rot = abs(delta.angle)
    sigma_t = config.trans_err_from_trans * trans + config.trans_err_from_rot * rot
    sigma_r = config.rot_err_from_trans * trans + config.rot_err_from_rot * rot
    return (
        max(sigma_t, config.min_odometry_std),
        max(sigma_r, config.min_odometry_std),
    )


def create_prior_factor(node_id: int, pose: Pose2D, config: SlamConfig) -> PoseFactor:
    """
    Create the prior factor anchoring a node to an absolute pose.

    Examples:
        >>> config = SlamConfig()
        >>> factor = create_prior_factor(0, config.initial_pose, config)
        >>> factor.kind
        <FactorKind.PRIOR: 'prior'>
    """
    return PoseFactor(
        kind=FactorKind.PRIOR,
        from_id=node_id,
        to_id=None,
        measured_relative_pose=pose,
        information=information_from_sigmas(*config.prior_sigmas),
    )


def create_odometry_factor(
    from_id: int, to_id: int, delta: Pose2D, config: SlamConfig
) -> PoseFactor:
    """
    Create an odometry factor weighted by the motion model.

    Args:
        from_id: Predecessor node id.
        to_id: New node id.
        delta: Odometry motion of to_id expressed in the from_id frame.
        config: Motion-model coefficients.

    Returns:
        ODOMETRY PoseFactor with information diag(1/σ_t², 1/σ_t², 1/σ_r²).
    """
    sigma_t, sigma_r = motion_model_sigmas(delta, config)
    return PoseFactor(
        kind=FactorKind.ODOMETRY,
        from_id=from_id,
        to_id=to_id,
        measured_relative_pose=delta,
        information=information_from_sigmas(sigma_t, sigma_t, sigma_r),
    )


def create_scan_match_factor(
    from_id: int, to_id: int, relative_pose: Pose2D, covariance: np.ndarray
) -> PoseFactor:
    """
    Create a scan-match factor from a converged alignment.

    Args:
        from_id: Node whose cloud is the matching target.
        to_id: Node whose cloud is the matching source.
        relative_pose: Pose of to_id in the from_id frame.
        covariance: 3x3 covariance reported by the scan matcher.

    Returns:
        SCAN_MATCH PoseFactor with information inv(covariance).
    """
    return PoseFactor(
        kind=FactorKind.SCAN_MATCH,
        from_id=from_id,
        to_id=to_id,
        measured_relative_pose=relative_pose,
        information=information_from_covariance(covariance),
    )

