"""Scan matching for the pose-graph SLAM engine.

The engine consumes scan matching through the ScanMatcher protocol:

    match(source_cloud, target_cloud, initial_relative_pose) -> ScanMatchResult

The returned relative pose maps source-frame points into the target frame,
i.e. it is the pose of the source node expressed in the target node's
frame. Matchers must be deterministic for identical inputs.

IcpScanMatcher is the shipped implementation: ICP with nearest-neighbor
correspondences from a KD-tree and a heuristic covariance from the final
residual. Each iteration either minimizes point-to-line distances with a
linearized least-squares step (default) or solves the closed-form SVD
point-to-point alignment.

Key functions:
    - find_correspondences: Nearest-neighbor matching with distance gating
    - compute_icp_residual: Sum of squared point-to-point distances
    - align_svd: Closed-form rigid alignment of corresponding points
    - icp_point_to_point: Full ICP loop
    - estimate_normals: Local PCA normals of a point cloud
    - align_point_to_line: Linearized point-to-line alignment step
    - icp_point_to_line: ICP loop with point-to-line steps
    - compute_icp_covariance: Residual-based pose covariance

Author: Navigation Engineer
Date: 2024
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

import numpy as np
from scipy.spatial import KDTree

from .se2 import compose_into_map, transform_points
from .types import PointCloud2D, Pose2D

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ScanMatchResult:
    """
    Outcome of a scan-matching attempt.

    Attributes:
        converged: True when the alignment is trustworthy. Non-converged
            results are discarded by the engine.
        relative_pose: Pose of the source frame in the target frame.
        covariance: 3x3 covariance of relative_pose [x, y, θ].
        iterations: Number of iterations the matcher ran.
        mean_squared_residual: Mean squared correspondence distance (m²).
    """

    converged: bool
    relative_pose: Pose2D
    covariance: np.ndarray = field(default_factory=lambda: np.eye(3))
    iterations: int = 0
    mean_squared_residual: float = float("inf")


class ScanMatcher(Protocol):
    """Aligns a source point cloud against a target point cloud."""

    def match(
        self,
        source_cloud: PointCloud2D,
        target_cloud: PointCloud2D,
        initial_relative_pose: Pose2D,
    ) -> ScanMatchResult:
        ...


def find_correspondences(
    source_points: np.ndarray,
    target_points: np.ndarray,
    max_distance: Optional[float] = None,
    tree: Optional[KDTree] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Find nearest-neighbor correspondences with distance-based gating.

    For each source point, finds the closest target point using a KD-tree.
    Pairs further apart than max_distance are rejected:

        b_{i,j} = 0  if ||p_i - q_j|| > d_max
                  1  otherwise

    Args:
        source_points: Source point cloud, shape (N, 2) in meters.
        target_points: Target point cloud, shape (M, 2) in meters.
        max_distance: Maximum correspondence distance in meters. If None,
            every nearest neighbor is accepted.
        tree: Prebuilt KD-tree over target_points (rebuilt if None).

    Returns:
        Tuple of (matched_source, matched_target, distances), with K <= N
        rows each.

    Examples:
        >>> source = np.array([[1.0, 0.0], [0.0, 1.0]])
        >>> target = np.array([[1.1, 0.0], [0.0, 0.9], [5.0, 5.0]])
        >>> src, tgt, dists = find_correspondences(source, target)
        >>> src.shape
        (2, 2)
    """
    if source_points.ndim != 2 or source_points.shape[1] != 2:
        raise ValueError(
            f"source_points must have shape (N, 2), got {source_points.shape}"
        )
    if target_points.ndim != 2 or target_points.shape[1] != 2:
        raise ValueError(
            f"target_points must have shape (M, 2), got {target_points.shape}"
        )

    if source_points.shape[0] == 0 or target_points.shape[0] == 0:
        return np.empty((0, 2)), np.empty((0, 2)), np.empty((0,))

    if tree is None:
        tree = KDTree(target_points)

    distances, indices = tree.query(source_points, k=1)

    if max_distance is not None:
        valid_mask = distances <= max_distance
        distances = distances[valid_mask]
        indices = indices[valid_mask]
        matched_source = source_points[valid_mask]
    else:
        matched_source = source_points

    matched_target = target_points[indices]

    return matched_source, matched_target, distances


def compute_icp_residual(source_points: np.ndarray, target_points: np.ndarray) -> float:
    """
    Sum of squared distances between corresponding points.

    Raises:
        ValueError: If point clouds have different sizes.
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )

    if source_points.shape[0] == 0:
        return 0.0

    diff = source_points - target_points
    return float(np.sum(diff**2))


def align_svd(source_points: np.ndarray, target_points: np.ndarray) -> Pose2D:
    """
    Optimal rigid alignment of corresponding points (closed form).

    The algorithm:
        1. Compute centroids of both point clouds.
        2. Center the point clouds.
        3. Cross-covariance H = Σ p_i q_iᵀ of the centered points.
        4. SVD: H = U Σ Vᵀ, rotation R = V Uᵀ (reflection corrected).
        5. Translation t = q̄ - R p̄.

    Args:
        source_points: Source points, shape (N, 2).
        target_points: Corresponding target points, shape (N, 2).

    Returns:
        Pose that maps source points onto target points.

    Raises:
        ValueError: If point clouds have different sizes or fewer than 2 points.

    Examples:
        >>> source = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        >>> pose = align_svd(source, source + np.array([2.0, 3.0]))
        >>> np.round(pose.translation, 6)
        array([2., 3.])
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )

    N = source_points.shape[0]
    if N < 2:
        raise ValueError(f"Need at least 2 correspondences for SVD alignment, got {N}")

    centroid_source = np.mean(source_points, axis=0)
    centroid_target = np.mean(target_points, axis=0)

    H = (source_points - centroid_source).T @ (target_points - centroid_target)

    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Reflection, not rotation: flip the last singular direction
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    yaw = np.arctan2(R[1, 0], R[0, 0])
    t = centroid_target - R @ centroid_source

    return Pose2D.from_translation(t, yaw)


def icp_point_to_point(
    source_scan: np.ndarray,
    target_scan: np.ndarray,
    initial_pose: Optional[Pose2D] = None,
    max_iterations: int = 50,
    tolerance: float = 1e-6,
    max_correspondence_distance: Optional[float] = None,
    min_correspondences: int = 3,
) -> Tuple[Pose2D, int, float, bool]:
    """
    Point-to-point ICP for 2D scan matching.

    Iteratively aligns source scan to target scan by alternating between
    finding gated correspondences and computing the SVD alignment of the
    matched pairs. Converges when the incremental correction is below
    tolerance.

    Args:
        source_scan: Source point cloud, shape (N, 2).
        target_scan: Target point cloud, shape (M, 2).
        initial_pose: Initial guess of the source pose in the target frame.
            Identity if None.
        max_iterations: Maximum number of ICP iterations.
        tolerance: Convergence threshold on ||correction||.
        max_correspondence_distance: Gating distance in meters, or None.
        min_correspondences: Minimum number of correspondences required
            for an alignment step.

    Returns:
        Tuple of (final_pose, num_iterations, final_residual, converged)
        where final_residual is the sum of squared correspondence distances.

    Raises:
        ValueError: If scans are empty or have invalid shapes.

    Examples:
        >>> source = np.array([[0, 0], [1, 0], [0, 1]], dtype=float)
        >>> pose, _, _, converged = icp_point_to_point(source, source + [0.2, 0.1])
        >>> converged
        True
    """
    if source_scan.ndim != 2 or source_scan.shape[1] != 2:
        raise ValueError(f"source_scan must have shape (N, 2), got {source_scan.shape}")
    if target_scan.ndim != 2 or target_scan.shape[1] != 2:
        raise ValueError(f"target_scan must have shape (M, 2), got {target_scan.shape}")

    if source_scan.shape[0] == 0:
        raise ValueError("source_scan is empty")
    if target_scan.shape[0] == 0:
        raise ValueError("target_scan is empty")

    current_pose = Pose2D.identity() if initial_pose is None else initial_pose
    tree = KDTree(target_scan)
    final_residual = np.inf

    for iteration in range(max_iterations):
        transformed_source = transform_points(current_pose, source_scan)

        matched_source, matched_target, _ = find_correspondences(
            transformed_source,
            target_scan,
            max_distance=max_correspondence_distance,
            tree=tree,
        )

        if matched_source.shape[0] < max(min_correspondences, 2):
            return current_pose, iteration + 1, final_residual, False

        final_residual = compute_icp_residual(matched_source, matched_target)

        # Correction acts on already-transformed points, so it is applied
        # on the target side: new = delta ⊕ current
        delta_pose = align_svd(matched_source, matched_target)
        current_pose = compose_into_map(current_pose, delta_pose)

        if np.linalg.norm(delta_pose.to_array()) < tolerance:
            return current_pose, iteration + 1, final_residual, True

    return current_pose, max_iterations, final_residual, False


def estimate_normals(
    points: np.ndarray,
    num_neighbors: int = 5,
    tree: Optional[KDTree] = None,
) -> np.ndarray:
    """
    Unit normals of a 2D point cloud by local PCA.

    Each normal is the eigenvector of the smallest eigenvalue of the
    covariance of the point's num_neighbors nearest neighbors (the point
    itself included). On a wall this is the wall's normal direction.

    Args:
        points: Point cloud, shape (N, 2).
        num_neighbors: Neighborhood size, clipped to [2, N].
        tree: Prebuilt KD-tree over points (built if None).

    Returns:
        Unit normals, shape (N, 2). Their sign is arbitrary.

    Raises:
        ValueError: If points has an invalid shape or fewer than 2 rows.
    """
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {points.shape}")
    n = points.shape[0]
    if n < 2:
        raise ValueError(f"Need at least 2 points to estimate normals, got {n}")

    k = min(max(num_neighbors, 2), n)
    if tree is None:
        tree = KDTree(points)
    _, indices = tree.query(points, k=k)

    neighborhoods = points[indices]
    centered = neighborhoods - neighborhoods.mean(axis=1, keepdims=True)
    covariances = np.einsum("nki,nkj->nij", centered, centered) / k

    # eigh sorts eigenvalues in ascending order
    _, eigenvectors = np.linalg.eigh(covariances)
    return eigenvectors[:, :, 0]


def align_point_to_line(
    source_points: np.ndarray,
    target_points: np.ndarray,
    target_normals: np.ndarray,
) -> Pose2D:
    """
    Linearized point-to-line alignment of corresponding points.

    Minimizes the squared distances of the moved source points to the
    lines through the target points:

        Σ (n_i · (R p_i + t - q_i))²

    with the small-angle model R p_i ≈ p_i + θ [-p_iy, p_ix], which makes
    every correspondence one row of a linear least-squares problem in
    (t_x, t_y, θ). Iterating the step inside ICP removes the linearization
    error.

    Args:
        source_points: Source points, shape (N, 2).
        target_points: Corresponding target points, shape (N, 2).
        target_normals: Unit normals at the target points, shape (N, 2).

    Returns:
        Pose moving the source points toward the target lines.

    Raises:
        ValueError: If shapes differ or fewer than 3 correspondences.
    """
    if source_points.shape != target_points.shape or target_normals.shape != target_points.shape:
        raise ValueError(
            f"Point clouds and normals must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}, "
            f"normals={target_normals.shape}"
        )

    N = source_points.shape[0]
    if N < 3:
        raise ValueError(f"Need at least 3 correspondences for point-to-line alignment, got {N}")

    nx = target_normals[:, 0]
    ny = target_normals[:, 1]
    A = np.column_stack(
        [nx, ny, ny * source_points[:, 0] - nx * source_points[:, 1]]
    )
    b = -np.einsum("ij,ij->i", target_normals, source_points - target_points)

    # lstsq copes with a single visible wall (rank-deficient A)
    solution, *_ = np.linalg.lstsq(A, b, rcond=None)
    return Pose2D(float(solution[0]), float(solution[1]), float(solution[2]))


def icp_point_to_line(
    source_scan: np.ndarray,
    target_scan: np.ndarray,
    initial_pose: Optional[Pose2D] = None,
    max_iterations: int = 50,
    tolerance: float = 1e-6,
    max_correspondence_distance: Optional[float] = None,
    min_correspondences: int = 3,
    num_normal_neighbors: int = 5,
) -> Tuple[Pose2D, int, float, bool]:
    """
    Point-to-line ICP for 2D scan matching.

    Same loop as icp_point_to_point, but each step minimizes the distance
    of source points to the local line through their target neighbor
    instead of the distance to the neighbor itself. Laser points sampled
    at different places along the same wall then no longer pull the
    alignment back along the wall.

    Args:
        source_scan: Source point cloud, shape (N, 2).
        target_scan: Target point cloud, shape (M, 2), M >= 2.
        initial_pose: Initial guess of the source pose in the target frame.
            Identity if None.
        max_iterations: Maximum number of ICP iterations.
        tolerance: Convergence threshold on ||correction||.
        max_correspondence_distance: Gating distance in meters, or None.
        min_correspondences: Minimum number of correspondences required
            for an alignment step.
        num_normal_neighbors: Neighborhood size for the target normals.

    Returns:
        Tuple of (final_pose, num_iterations, final_residual, converged)
        where final_residual is the sum of squared point-to-line distances.

    Raises:
        ValueError: If scans are empty or have invalid shapes.
    """
    if source_scan.ndim != 2 or source_scan.shape[1] != 2:
        raise ValueError(f"source_scan must have shape (N, 2), got {source_scan.shape}")
    if target_scan.ndim != 2 or target_scan.shape[1] != 2:
        raise ValueError(f"target_scan must have shape (M, 2), got {target_scan.shape}")

    if source_scan.shape[0] == 0:
        raise ValueError("source_scan is empty")
    if target_scan.shape[0] == 0:
        raise ValueError("target_scan is empty")

    current_pose = Pose2D.identity() if initial_pose is None else initial_pose
    tree = KDTree(target_scan)
    normals = estimate_normals(target_scan, num_normal_neighbors, tree=tree)
    final_residual = np.inf

    for iteration in range(max_iterations):
        transformed_source = transform_points(current_pose, source_scan)
        distances, indices = tree.query(transformed_source, k=1)
        if max_correspondence_distance is not None:
            valid_mask = distances <= max_correspondence_distance
            transformed_source = transformed_source[valid_mask]
            indices = indices[valid_mask]

        if transformed_source.shape[0] < max(min_correspondences, 3):
            return current_pose, iteration + 1, final_residual, False

        matched_target = target_scan[indices]
        matched_normals = normals[indices]
        line_distances = np.einsum(
            "ij,ij->i", matched_normals, transformed_source - matched_target
        )
        final_residual = float(np.sum(line_distances**2))

        delta_pose = align_point_to_line(transformed_source, matched_target, matched_normals)
        current_pose = compose_into_map(current_pose, delta_pose)

        if np.linalg.norm(delta_pose.to_array()) < tolerance:
            return current_pose, iteration + 1, final_residual, True

    return current_pose, max_iterations, final_residual, False


def compute_icp_covariance(
    source_scan: np.ndarray,
    target_scan: np.ndarray,
    final_pose: Pose2D,
    max_correspondence_distance: Optional[float] = None,
    lever_arm: float = 1.0,
) -> np.ndarray:
    """
    Estimate covariance of an ICP pose (heuristic).

    Scales the per-point residual by the inverse number of correspondences:
        σ_xy² ≈ (residual / N) / N
        σ_θ   ≈ σ_xy / lever_arm

    This is a heuristic, not a rigorous uncertainty estimate. A perfect
    alignment yields a zero covariance; callers apply a floor.

    Args:
        source_scan: Source point cloud, shape (N, 2).
        target_scan: Target point cloud, shape (M, 2).
        final_pose: Final ICP pose.
        max_correspondence_distance: Gating distance in meters.
        lever_arm: Typical point distance (m) converting translation
            uncertainty into rotation uncertainty.

    Returns:
        Diagonal covariance matrix of shape (3, 3) for [x, y, θ].
    """
    transformed_source = transform_points(final_pose, source_scan)

    matched_source, matched_target, _ = find_correspondences(
        transformed_source, target_scan, max_distance=max_correspondence_distance
    )

    if matched_source.shape[0] < 10:
        # Too few correspondences → high uncertainty
        return np.diag([1.0, 1.0, 0.1])

    N = matched_source.shape[0]
    residual_per_point = compute_icp_residual(matched_source, matched_target) / N

    sigma_xy = np.sqrt(residual_per_point / N)
    sigma_yaw = sigma_xy / lever_arm

    return np.diag([sigma_xy**2, sigma_xy**2, sigma_yaw**2])


ICP_METHODS = ("point_to_point", "point_to_line")


class IcpScanMatcher:
    """
    ScanMatcher backed by ICP.

    ``method`` selects the ICP variant: "point_to_line" (default) for
    structured scenes such as walls, or "point_to_point". A match is
    reported as converged only when ICP converged, both clouds have at
    least ``min_points`` points, and the mean squared point-to-point
    residual of the final correspondences is at most
    ``max_mean_squared_residual``.

    Args:
        max_iterations: Maximum ICP iterations.
        tolerance: ICP convergence threshold.
        max_correspondence_distance: Gating distance (m).
        min_points: Minimum number of points in each cloud.
        max_mean_squared_residual: Acceptance bound on the mean squared
            correspondence distance (m²).
        min_sigma_xy: Floor on the translation standard deviation (m).
        min_sigma_theta: Floor on the heading standard deviation (rad).
        method: "point_to_line" or "point_to_point".
        num_normal_neighbors: Neighborhood size for the target normals
            (point_to_line only).
    """

    def __init__(
        self,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        max_correspondence_distance: float = 1.0,
        min_points: int = 10,
        max_mean_squared_residual: float = 0.05,
        min_sigma_xy: float = 0.01,
        min_sigma_theta: float = 0.005,
        method: str = "point_to_line",
        num_normal_neighbors: int = 5,
    ):
        if method not in ICP_METHODS:
            raise ValueError(f"Unknown ICP method: {method}")
        if min_sigma_xy <= 0 or min_sigma_theta <= 0:
            raise ValueError("covariance floors must be positive")
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.min_points = min_points
        self.max_mean_squared_residual = max_mean_squared_residual
        self.min_sigma_xy = min_sigma_xy
        self.min_sigma_theta = min_sigma_theta
        self.method = method
        self.num_normal_neighbors = num_normal_neighbors

    def match(
        self,
        source_cloud: PointCloud2D,
        target_cloud: PointCloud2D,
        initial_relative_pose: Pose2D,
    ) -> ScanMatchResult:
        source = np.asarray(source_cloud, dtype=np.float64).reshape(-1, 2)
        target = np.asarray(target_cloud, dtype=np.float64).reshape(-1, 2)
        if source.shape[0] < self.min_points or target.shape[0] < self.min_points:
            logger.debug(
                "Skipping scan match: %d source / %d target points",
                source.shape[0],
                target.shape[0],
            )
            return ScanMatchResult(converged=False, relative_pose=initial_relative_pose)

        if self.method == "point_to_line":
            pose, iterations, residual, converged = icp_point_to_line(
                source,
                target,
                initial_pose=initial_relative_pose,
                max_iterations=self.max_iterations,
                tolerance=self.tolerance,
                max_correspondence_distance=self.max_correspondence_distance,
                min_correspondences=self.min_points,
                num_normal_neighbors=self.num_normal_neighbors,
            )
        else:
            pose, iterations, residual, converged = icp_point_to_point(
                source,
                target,
                initial_pose=initial_relative_pose,
                max_iterations=self.max_iterations,
                tolerance=self.tolerance,
                max_correspondence_distance=self.max_correspondence_distance,
                min_correspondences=self.min_points,
            )

        mean_squared = self._mean_squared_residual(source, target, pose)
        if converged and mean_squared > self.max_mean_squared_residual:
            logger.debug(
                "Rejecting ICP match: mean squared residual %.4g > %.4g",
                mean_squared,
                self.max_mean_squared_residual,
            )
            converged = False

        covariance = compute_icp_covariance(
            source, target, pose, self.max_correspondence_distance
        )
        floor = np.array(
            [self.min_sigma_xy**2, self.min_sigma_xy**2, self.min_sigma_theta**2]
        )
        covariance = np.diag(np.maximum(np.diag(covariance), floor))

        return ScanMatchResult(
            converged=converged,
            relative_pose=pose,
            covariance=covariance,
            iterations=iterations,
            mean_squared_residual=mean_squared,
        )

    def _mean_squared_residual(
        self, source: np.ndarray, target: np.ndarray, pose: Pose2D
    ) -> float:
        matched_source, matched_target, _ = find_correspondences(
            transform_points(pose, source),
            target,
            max_distance=self.max_correspondence_distance,
        )
        if matched_source.shape[0] == 0:
            return float("inf")
        return compute_icp_residual(matched_source, matched_target) / matched_source.shape[0]
