"""Pose graph store: node arena and submitted factors.

Nodes are kept in a list indexed by id (ids are contiguous from 0) and
factors refer to nodes by integer id only. The store is owned by the
engine; callers outside the engine only ever see snapshots.

Author: Navigation Engineer
Date: 2024
"""

import copy
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from .se2 import transform_points
from .types import PgNode, Pose2D, PoseFactor


class PoseGraphStore:
    """Append-only arena of PgNode values plus the factor list."""

    def __init__(self):
        self._nodes: List[PgNode] = []
        self._factors: List[PoseFactor] = []

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[PgNode]:
        """Live node list (read-only by convention; engine internal)."""
        return self._nodes

    @property
    def factors(self) -> List[PoseFactor]:
        return list(self._factors)

    @property
    def num_factors(self) -> int:
        return len(self._factors)

    def next_id(self) -> int:
        return len(self._nodes)

    def last_node(self) -> Optional[PgNode]:
        """Most recently appended node, or None when the graph is empty."""
        return self._nodes[-1] if self._nodes else None

    def node(self, node_id: int) -> PgNode:
        return self._nodes[node_id]

    def append(self, node: PgNode, factors: Iterable[PoseFactor] = ()) -> None:
        """
        Append a node and the factors submitted with it.

        Raises:
            ValueError: If the node id is not the next id, or a factor
                references a node that would not exist after the append.
        """
        if node.id != len(self._nodes):
            raise ValueError(f"expected node id {len(self._nodes)}, got {node.id}")
        factors = list(factors)
        for factor in factors:
            for node_id in factor.node_ids:
                if node_id > node.id:
                    raise ValueError(f"factor references unknown node {node_id}")
        self._nodes.append(node)
        self._factors.extend(factors)

    def set_factors(self, factors: Iterable[PoseFactor]) -> None:
        """Replace the whole factor set (offline replay)."""
        self._factors = list(factors)

    def update_poses(self, estimates: Mapping[int, Pose2D]) -> None:
        """
        Overwrite every node's estimated pose.

        All estimates are checked before any node is touched, so a bad
        estimate set leaves the graph unchanged.

        Raises:
            ValueError: If an estimate is missing for any node or is not
                a Pose2D.
        """
        missing = [node.id for node in self._nodes if node.id not in estimates]
        if missing:
            raise ValueError(f"no estimate for nodes {missing}")
        for node in self._nodes:
            if not isinstance(estimates[node.id], Pose2D):
                raise ValueError(
                    f"estimate for node {node.id} is not a Pose2D: {estimates[node.id]!r}"
                )
        for node in self._nodes:
            node.estimated_pose = estimates[node.id]

    def current_poses(self) -> Dict[int, Pose2D]:
        return {node.id: node.estimated_pose for node in self._nodes}

    def snapshots(self) -> List[PgNode]:
        """Copies of all nodes; mutating them does not affect the store."""
        return [copy.copy(node) for node in self._nodes]

    def current_map(self) -> np.ndarray:
        """
        All node clouds in the map frame, using the current estimates.

        Returns:
            Array of shape (N, 2); (0, 2) when there are no points.
        """
        clouds = [
            transform_points(node.estimated_pose, node.point_cloud)
            for node in self._nodes
            if node.point_cloud.shape[0] > 0
        ]
        if not clouds:
            return np.empty((0, 2), dtype=np.float64)
        return np.vstack(clouds)
