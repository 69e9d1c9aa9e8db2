"""Configuration for the pose-graph SLAM engine.

All tunables the engine reads (admission thresholds, motion-model
coefficients, loop-closure radius and budget, prior sigmas, the global
origin, the optimization mode and the laser mounting offset) live in one
immutable SlamConfig value that is passed to the engine at construction.
Algorithmic code never looks configuration up from global state.

Configurations are usually loaded once at startup from a JSON file with
SlamConfig.from_json("config/slam.json") and handed to SlamEngine.

Author: Navigation Engineer
Date: 2024
"""

import enum
import json
import math
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Union

from .types import Pose2D


class OptimizationMode(enum.Enum):
    """When the solver runs.

    ONLINE: after every node admission (incremental update + full resync).
    OFFLINE: once, in SlamEngine.finalize(), as a batch replay.
    """

    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class SlamConfig:
    """
    Parameters of the pose-graph SLAM engine.

    Attributes:
        min_translation_threshold: Cumulative odometry travel (m) since the
            last node above which a new node is admitted.
        min_angle_threshold: Heading change (rad) since the last node above
            which a new node is admitted.
        trans_err_from_trans: Translation σ per meter travelled.
        trans_err_from_rot: Translation σ per radian rotated.
        rot_err_from_trans: Rotation σ per meter travelled.
        rot_err_from_rot: Rotation σ per radian rotated.
        min_odometry_std: Lower bound on the odometry σ values.
        consider_odometry_constraint: Add an odometry factor between
            successive nodes.
        prior_x_std: σ_x of the prior on node 0 (m).
        prior_y_std: σ_y of the prior on node 0 (m).
        prior_theta_std: σ_θ of the prior on node 0 (rad).
        non_successive_scan_constraints: Search for loop closures against
            older nodes.
        max_factors_per_node: Maximum number of loop-closure factors added
            per admission.
        maximum_node_distance_for_scan_comparison: Radius (m) around the
            predecessor within which older nodes are scan-matched.
        initial_x: Map-frame x of node 0 (m).
        initial_y: Map-frame y of node 0 (m).
        initial_theta: Map-frame heading of node 0 (rad).
        optimization_mode: ONLINE or OFFLINE.
        laser_offset_x: Laser position along the base x-axis (m).
        laser_offset_y: Laser position along the base y-axis (m).

    Raises:
        ValueError: If a threshold, coefficient or sigma is out of range.
    """

    # Criteria for adding a new node
    min_translation_threshold: float = 0.5
    min_angle_threshold: float = math.pi / 6.0

    # Motion model
    trans_err_from_trans: float = 1.0
    trans_err_from_rot: float = 1.0
    rot_err_from_trans: float = 1.0
    rot_err_from_rot: float = 1.0
    min_odometry_std: float = 1e-3

    # Pose graph
    consider_odometry_constraint: bool = False
    prior_x_std: float = 1.0
    prior_y_std: float = 1.0
    prior_theta_std: float = 1.0
    non_successive_scan_constraints: bool = True
    max_factors_per_node: int = 3
    maximum_node_distance_for_scan_comparison: float = 5.0

    # Global origin of node 0
    initial_x: float = 0.0
    initial_y: float = 0.0
    initial_theta: float = 0.0

    optimization_mode: OptimizationMode = OptimizationMode.ONLINE

    # Laser mounting (base frame)
    laser_offset_x: float = 0.2
    laser_offset_y: float = 0.0

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not isinstance(self.optimization_mode, OptimizationMode):
            try:
                mode = OptimizationMode(str(self.optimization_mode).lower())
            except ValueError:
                raise ValueError(
                    f"optimization_mode must be one of "
                    f"{[m.value for m in OptimizationMode]}, "
                    f"got {self.optimization_mode!r}"
                )
            object.__setattr__(self, "optimization_mode", mode)

        for name in (
            "min_translation_threshold",
            "min_angle_threshold",
            "trans_err_from_trans",
            "trans_err_from_rot",
            "rot_err_from_trans",
            "rot_err_from_rot",
            "maximum_node_distance_for_scan_comparison",
        ):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

        for name in ("min_odometry_std", "prior_x_std", "prior_y_std", "prior_theta_std"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if int(self.max_factors_per_node) != self.max_factors_per_node or self.max_factors_per_node < 0:
            raise ValueError(
                f"max_factors_per_node must be a non-negative integer, "
                f"got {self.max_factors_per_node}"
            )
        object.__setattr__(self, "max_factors_per_node", int(self.max_factors_per_node))

        for name in ("initial_x", "initial_y", "initial_theta", "laser_offset_x", "laser_offset_y"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")

    @property
    def initial_pose(self) -> Pose2D:
        """Map-frame pose assigned to node 0."""
        return Pose2D(x=self.initial_x, y=self.initial_y, angle=self.initial_theta)

    @property
    def prior_sigmas(self):
        """(σ_x, σ_y, σ_θ) of the prior on node 0."""
        return (self.prior_x_std, self.prior_y_std, self.prior_theta_std)

    @property
    def laser_offset(self):
        """Laser position (x, y) in the base frame."""
        return (self.laser_offset_x, self.laser_offset_y)

    @property
    def online(self) -> bool:
        return self.optimization_mode is OptimizationMode.ONLINE

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "SlamConfig":
        """
        Build a configuration from a flat dictionary.

        Args:
            params: Mapping of field name to value. Missing fields keep
                their defaults.

        Returns:
            Validated SlamConfig.

        Raises:
            ValueError: If a key is not a known parameter or a value is
                invalid.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown SLAM configuration keys: {unknown}")
        return cls(**params)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "SlamConfig":
        """
        Load a configuration from a JSON file.

        Args:
            path: Path to a JSON object with SlamConfig field names as keys.

        Returns:
            Validated SlamConfig.
        """
        with open(path) as f:
            params = json.load(f)
        if not isinstance(params, dict):
            raise ValueError(f"SLAM configuration in {path} must be a JSON object")
        return cls.from_dict(params)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        params = asdict(self)
        params["optimization_mode"] = self.optimization_mode.value
        return params

    def to_json(self, path: Union[str, Path]) -> None:
        """Write the configuration to a JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
