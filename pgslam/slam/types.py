"""Type definitions and data structures for the pose-graph SLAM engine.

This module defines the value types that flow between the engine's
components: poses, graph nodes and the factors submitted to the solver.

Key types:
    - Pose2D: immutable SE(2) pose (translation + heading in (-π, π])
    - PgNode: pose-graph vertex with its captured point cloud
    - FactorKind / PoseFactor: constraints submitted to the solver
    - PointCloud2D: type alias for (N, 2) point arrays

Author: Navigation Engineer
Date: 2024
"""

import enum
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ..utils.angles import wrap_angle


# Type alias for clarity and documentation
PointCloud2D = np.ndarray  # Shape (N, 2), points in 2D space (meters)


@dataclass(frozen=True)
class Pose2D:
    """
    SE(2) pose: a 2D translation and a heading angle.

    Pose2D is an immutable value type. The heading is normalized to (-π, π]
    on construction, so two poses that differ by a full turn compare equal.
    All frame-algebra operations in pgslam.slam.se2 return new instances.

    Attributes:
        x: Position along the x-axis (meters).
        y: Position along the y-axis (meters).
        angle: Heading (radians), counter-clockwise from the positive x-axis.

    Examples:
        >>> p = Pose2D(x=1.0, y=2.0, angle=np.pi / 2)
        >>> p.translation
        array([1., 2.])
        >>> Pose2D.from_array(np.array([0.0, 0.0, -np.pi])).angle
        3.141592653589793
    """

    x: float
    y: float
    angle: float

    def __post_init__(self) -> None:
        """Validate values and normalize the heading."""
        if not np.isfinite(self.x):
            raise ValueError(f"x must be finite, got {self.x}")
        if not np.isfinite(self.y):
            raise ValueError(f"y must be finite, got {self.y}")
        if not np.isfinite(self.angle):
            raise ValueError(f"angle must be finite, got {self.angle}")
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        object.__setattr__(self, "angle", wrap_angle(self.angle))

    @property
    def translation(self) -> np.ndarray:
        """Translation as a fresh array [x, y]."""
        return np.array([self.x, self.y], dtype=np.float64)

    def to_array(self) -> np.ndarray:
        """
        Convert pose to NumPy array [x, y, angle].

        Returns:
            Array of shape (3,).
        """
        return np.array([self.x, self.y, self.angle], dtype=np.float64)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "Pose2D":
        """
        Create Pose2D from an array [x, y, angle].

        Raises:
            ValueError: If array does not have shape (3,).
        """
        arr = np.asarray(arr, dtype=np.float64)
        if arr.shape != (3,):
            raise ValueError(f"Array must have shape (3,), got {arr.shape}")
        return cls(x=float(arr[0]), y=float(arr[1]), angle=float(arr[2]))

    @classmethod
    def from_translation(cls, translation, angle: float) -> "Pose2D":
        """Create Pose2D from a 2-vector and a heading."""
        translation = np.asarray(translation, dtype=np.float64)
        if translation.shape != (2,):
            raise ValueError(
                f"translation must have shape (2,), got {translation.shape}"
            )
        return cls(x=float(translation[0]), y=float(translation[1]), angle=angle)

    @classmethod
    def identity(cls) -> "Pose2D":
        """Identity pose (origin with zero rotation)."""
        return cls(x=0.0, y=0.0, angle=0.0)

    def __repr__(self) -> str:
        """Readable string representation."""
        return f"Pose2D(x={self.x:.4f}, y={self.y:.4f}, angle={self.angle:.4f})"


@dataclass(eq=False)
class PgNode:
    """
    Pose-graph vertex.

    A node is created when the admission policy fires on a laser scan. It
    keeps the scan's point cloud in its own sensor frame for the whole run;
    only ``estimated_pose`` changes, and only after a solve.

    Attributes:
        id: Insertion index in the pose graph (contiguous from 0).
        estimated_pose: Current estimate of the node pose in the map frame.
        point_cloud: Points captured at admission, shape (N, 2), node frame.
            Stored read-only.
        odom_pose: Raw odometry pose at admission, used to recompute the
            odometry delta to the predecessor.
    """

    id: int
    estimated_pose: Pose2D
    point_cloud: PointCloud2D
    odom_pose: Pose2D = field(default_factory=Pose2D.identity)

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValueError(f"node id must be non-negative, got {self.id}")
        cloud = np.array(self.point_cloud, dtype=np.float64)
        if cloud.size == 0:
            cloud = np.empty((0, 2), dtype=np.float64)
        if cloud.ndim != 2 or cloud.shape[1] != 2:
            raise ValueError(
                f"point_cloud must have shape (N, 2), got {cloud.shape}"
            )
        cloud.setflags(write=False)
        self.point_cloud = cloud

    @property
    def position(self) -> np.ndarray:
        """Estimated position [x, y] in the map frame."""
        return self.estimated_pose.translation


class FactorKind(enum.Enum):
    """Kinds of constraints submitted to the solver."""

    PRIOR = "prior"
    ODOMETRY = "odometry"
    SCAN_MATCH = "scan_match"


def _check_information(information: np.ndarray) -> np.ndarray:
    """Validate a 3x3 information matrix (symmetric positive-definite)."""
    info = np.array(information, dtype=np.float64)
    if info.shape != (3, 3):
        raise ValueError(f"information must have shape (3, 3), got {info.shape}")
    if not np.all(np.isfinite(info)):
        raise ValueError("information must be finite")
    if not np.allclose(info, info.T):
        raise ValueError("information must be symmetric")
    try:
        np.linalg.cholesky(info)
    except np.linalg.LinAlgError:
        raise ValueError(
            f"information must be positive-definite, got eigenvalues "
            f"{np.linalg.eigvalsh(info)}"
        )
    return info


@dataclass(frozen=True, eq=False)
class PoseFactor:
    """
    A constraint submitted to the pose graph solver.

    Attributes:
        kind: PRIOR, ODOMETRY or SCAN_MATCH.
        from_id: Node the measurement is expressed in (the anchored node for
            a PRIOR).
        to_id: Node being measured; None for a PRIOR.
        measured_relative_pose: Measured pose of ``to_id`` in the frame of
            ``from_id`` (absolute pose for a PRIOR).
        information: 3x3 symmetric positive-definite information matrix.

    Raises:
        ValueError: If the information matrix is malformed or the ids do not
            match the factor kind.
    """

    kind: FactorKind
    from_id: int
    to_id: Optional[int]
    measured_relative_pose: Pose2D
    information: np.ndarray

    def __post_init__(self) -> None:
        if self.kind is FactorKind.PRIOR:
            if self.to_id is not None:
                raise ValueError("prior factor must not have a to_id")
        elif self.to_id is None:
            raise ValueError(f"{self.kind.value} factor requires a to_id")
        info = _check_information(self.information)
        info.setflags(write=False)
        object.__setattr__(self, "information", info)

    @property
    def node_ids(self):
        """Ids of the nodes this factor constrains."""
        if self.to_id is None:
            return (self.from_id,)
        return (self.from_id, self.to_id)
