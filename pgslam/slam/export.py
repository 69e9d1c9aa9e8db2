"""Node pose export.

Writes the estimated node poses as CSV, one row per node:

    id,x,y,theta
    0,0.000000,0.000000,0.000000
    1,0.512345,0.001234,0.010000

Author: Navigation Engineer
Date: 2024
"""

from pathlib import Path
from typing import Iterable, Union

import numpy as np

from .types import PgNode

POSE_CSV_HEADER = "id,x,y,theta"


def write_node_poses(nodes: Iterable[PgNode], path: Union[str, Path]) -> Path:
    """
    Write node ids and estimated poses to a CSV file.

    Args:
        nodes: Nodes to export (typically SlamEngine.nodes()).
        path: Output file; parent directories are created.

    Returns:
        The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = np.array(
        [
            [node.id, node.estimated_pose.x, node.estimated_pose.y, node.estimated_pose.angle]
            for node in nodes
        ],
        dtype=np.float64,
    ).reshape(-1, 4)
    np.savetxt(
        path,
        rows,
        delimiter=",",
        header=POSE_CSV_HEADER,
        comments="",
        fmt=["%d", "%.6f", "%.6f", "%.6f"],
    )
    return path


def read_node_poses(path: Union[str, Path]) -> np.ndarray:
    """
    Load a node pose CSV written by write_node_poses.

    Returns:
        Array of shape (N, 4) with columns id, x, y, theta.
    """
    data = np.loadtxt(path, delimiter=",", skiprows=1, ndmin=2)
    return data.reshape(-1, 4)
