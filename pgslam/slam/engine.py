"""Pose-graph SLAM engine.

SlamEngine is the entry point the rest of a robot stack talks to. It turns
a stream of odometry readings and laser scans into a pose graph:

    engine = SlamEngine(SlamConfig.from_json("config/slam.json"))
    engine.observe_odometry([x, y], theta)       # every odometry message
    engine.observe_laser(ranges, rmin, rmax, amin, amax)  # every scan
    pose = engine.current_pose()
    points = engine.current_map()
    engine.finalize()                            # end of run

Each laser scan is checked against the admission thresholds. An admitted
scan becomes a node seeded at the live pose; the constraint builder links
it to the graph and the orchestrator schedules optimization.

All public methods are serialized by one lock. The engine is not
reentrant: scan matchers and solvers must not call back into it.

Author: Navigation Engineer
Date: 2024
"""

import logging
import threading
from typing import List, Optional, Sequence

import numpy as np

from .admission import NodeAdmissionPolicy
from .config import OptimizationMode, SlamConfig
from .constraints import ConstraintBuilder
from .laser import laser_scan_to_point_cloud
from .odometry import OdometryTracker
from .orchestrator import OptimizationOrchestrator
from .pose_graph import PoseGraphStore
from .scan_matching import IcpScanMatcher, ScanMatcher
from .types import PgNode, Pose2D, PoseFactor

logger = logging.getLogger(__name__)


class SlamEngine:
    """
    Streaming 2D pose-graph SLAM.

    Args:
        config: Engine configuration. Defaults to SlamConfig().
        scan_matcher: Scan matcher; IcpScanMatcher() if None.
        solver: Pose-graph solver; IncrementalPoseGraphSolver() if None.
    """

    def __init__(
        self,
        config: Optional[SlamConfig] = None,
        scan_matcher: Optional[ScanMatcher] = None,
        solver=None,
    ):
        if config is None:
            config = SlamConfig()
        if scan_matcher is None:
            scan_matcher = IcpScanMatcher()
        if solver is None:
            # Import here to avoid circular dependency
            from ..estimators.pose_graph_solver import IncrementalPoseGraphSolver

            solver = IncrementalPoseGraphSolver()

        self.config = config
        self._lock = threading.Lock()
        self._tracker = OdometryTracker()
        self._admission = NodeAdmissionPolicy(config, self._tracker)
        self._graph = PoseGraphStore()
        self._builder = ConstraintBuilder(config, scan_matcher)
        self._orchestrator = OptimizationOrchestrator(
            config, self._builder, solver, self._graph
        )

    @property
    def mode(self) -> OptimizationMode:
        return self.config.optimization_mode

    @property
    def odometry_initialized(self) -> bool:
        with self._lock:
            return self._tracker.initialized

    @property
    def num_factors(self) -> int:
        with self._lock:
            return self._graph.num_factors

    @property
    def finalized(self) -> bool:
        with self._lock:
            return self._orchestrator.finalized

    def observe_odometry(self, location: Sequence[float], angle: float) -> None:
        """
        Record a raw odometry reading.

        Args:
            location: Raw position [x, y] in the odometry frame (meters).
            angle: Raw heading (radians).
        """
        with self._lock:
            self._tracker.observe_odometry(location, angle)

    def observe_laser(
        self,
        ranges: Sequence[float],
        range_min: float,
        range_max: float,
        angle_min: float,
        angle_max: float,
    ) -> bool:
        """
        Process a laser scan; admit it as a node if the robot moved enough.

        Args:
            ranges: Measured ranges (meters), one per ray.
            range_min: Minimum valid range (meters).
            range_max: Maximum valid range (meters).
            angle_min: Bearing of the first ray (radians).
            angle_max: Bearing of the last ray (radians).

        Returns:
            True if a node was added.

        Raises:
            SolverError: If the solver fails; no node is added and no pose
                changes.
        """
        with self._lock:
            travelled = self._tracker.cumulative_translation
            if not self._admission.should_admit():
                return False

            node_id = self._graph.next_id()
            if node_id == 0:
                pose = self.config.initial_pose
            else:
                pred = self._graph.node(node_id - 1)
                pose = self._tracker.current_live_pose(pred.estimated_pose)

            cloud = laser_scan_to_point_cloud(
                ranges,
                range_min,
                range_max,
                angle_min,
                angle_max,
                laser_offset=self.config.laser_offset,
            )
            node = PgNode(
                id=node_id,
                estimated_pose=pose,
                point_cloud=cloud,
                odom_pose=self._tracker.last_raw_pose,
            )

            logger.info("Adding node %d", node_id)
            try:
                self._orchestrator.admit(node)
            except Exception:
                # Rejected admission: keep accumulating toward the next scan
                self._tracker.cumulative_translation = travelled
                raise
            self._tracker.mark_node()
            return True

    def current_pose(self) -> Pose2D:
        """Live pose: the last node's estimate composed with the odometry delta."""
        with self._lock:
            last = self._graph.last_node()
            return self._tracker.current_live_pose(
                None if last is None else last.estimated_pose
            )

    def current_map(self) -> np.ndarray:
        """All node clouds in the map frame, shape (N, 2)."""
        with self._lock:
            return self._graph.current_map()

    def nodes(self) -> List[PgNode]:
        """Snapshot copies of all nodes, in id order."""
        with self._lock:
            return self._graph.snapshots()

    def factors(self) -> List[PoseFactor]:
        """Factors currently in the graph (PoseFactor values are immutable)."""
        with self._lock:
            return self._graph.factors

    def finalize(self) -> None:
        """
        End the run; in offline mode this runs the one batch optimization.

        Calling finalize() again is a no-op.
        """
        with self._lock:
            self._orchestrator.finalize()
