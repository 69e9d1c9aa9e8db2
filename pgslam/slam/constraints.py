"""Constraint construction for newly admitted pose-graph nodes.

For a new node k > 0 with predecessor k-1 the builder produces:

    - a successive scan-match factor (k-1 → k) when the predecessor's and
      the new node's clouds align;
    - optionally an odometry factor (k-1 → k) weighted by the motion model;
    - up to max_factors_per_node loop-closure factors (j → k-1) against
      older nodes j ≤ k-3 that lie within the comparison radius of the
      predecessor.

Loop closures are searched from the predecessor rather than the new node,
so every loop-closure factor links two nodes that are already in the
graph. Candidates are scanned oldest first.

The builder is mode-agnostic: the online orchestrator calls it once per
admission and the offline orchestrator replays it over the whole graph.

Author: Navigation Engineer
Date: 2024
"""

import logging
import warnings
from typing import List, Sequence

import numpy as np

from .config import SlamConfig
from .factors import create_odometry_factor, create_scan_match_factor
from .scan_matching import ScanMatcher
from .se2 import express_in_target
from .types import PgNode, PoseFactor

logger = logging.getLogger(__name__)


class ConstraintBuilder:
    """
    Builds the factors that connect a new node to the existing graph.

    Args:
        config: Engine configuration.
        scan_matcher: Scan matcher used for successive and loop-closure
            alignments.
    """

    def __init__(self, config: SlamConfig, scan_matcher: ScanMatcher):
        self.config = config
        self.scan_matcher = scan_matcher

    def build(self, new_node: PgNode, existing_nodes: Sequence[PgNode]) -> List[PoseFactor]:
        """
        Factors connecting new_node to existing_nodes.

        Args:
            new_node: The node being admitted.
            existing_nodes: Nodes with ids 0 .. new_node.id - 1, in id order.

        Returns:
            Factors in the order successive scan match, odometry, loop
            closures. Empty for node 0.

        Raises:
            ValueError: If existing_nodes does not end with the predecessor.
        """
        if new_node.id == 0:
            return []
        if len(existing_nodes) < new_node.id or existing_nodes[new_node.id - 1].id != new_node.id - 1:
            raise ValueError(
                f"existing_nodes must contain nodes 0..{new_node.id - 1} in id order"
            )
        pred = existing_nodes[new_node.id - 1]

        factors = []
        successive = self.successive_factor(new_node, pred)
        if successive is not None:
            factors.append(successive)

        odometry = None
        if self.config.consider_odometry_constraint:
            odometry = self.odometry_factor(new_node, pred)
            factors.append(odometry)

        closures = []
        if self.config.non_successive_scan_constraints and new_node.id > 2:
            closures = self.loop_closure_factors(pred, existing_nodes[: new_node.id - 2])
            factors.extend(closures)

        logger.debug(
            "Node %d: %d successive, %d odometry, %d loop-closure factors",
            new_node.id,
            int(successive is not None),
            int(odometry is not None),
            len(closures),
        )
        if successive is None and odometry is None:
            warnings.warn(
                f"Node {new_node.id} has no constraint to its predecessor; "
                f"it stays at its odometry seed",
                RuntimeWarning,
            )
        return factors

    def successive_factor(self, new_node: PgNode, pred: PgNode):
        """Scan-match factor pred → new_node, or None if the match fails."""
        guess = express_in_target(new_node.estimated_pose, pred.estimated_pose)
        result = self.scan_matcher.match(new_node.point_cloud, pred.point_cloud, guess)
        if not result.converged:
            logger.debug("Successive scan match %d -> %d did not converge", pred.id, new_node.id)
            return None
        return create_scan_match_factor(
            pred.id, new_node.id, result.relative_pose, result.covariance
        )

    def odometry_factor(self, new_node: PgNode, pred: PgNode) -> PoseFactor:
        """Odometry factor pred → new_node from the raw odometry at both nodes."""
        delta = express_in_target(new_node.odom_pose, pred.odom_pose)
        return create_odometry_factor(pred.id, new_node.id, delta, self.config)

    def loop_closure_factors(
        self, pred: PgNode, candidates: Sequence[PgNode]
    ) -> List[PoseFactor]:
        """
        Loop-closure factors cand → pred against older candidate nodes.

        Args:
            pred: Predecessor of the new node.
            candidates: Nodes 0 .. pred.id - 2, oldest first.

        Returns:
            At most max_factors_per_node factors.
        """
        factors = []
        radius = self.config.maximum_node_distance_for_scan_comparison
        for cand in candidates:
            if len(factors) >= self.config.max_factors_per_node:
                break
            if np.linalg.norm(cand.position - pred.position) > radius:
                continue
            guess = express_in_target(pred.estimated_pose, cand.estimated_pose)
            result = self.scan_matcher.match(pred.point_cloud, cand.point_cloud, guess)
            if not result.converged:
                continue
            logger.debug("Loop closure %d -> %d", cand.id, pred.id)
            factors.append(
                create_scan_match_factor(
                    cand.id, pred.id, result.relative_pose, result.covariance
                )
            )
        return factors
