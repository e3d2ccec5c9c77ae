#!/usr/bin/env python3
import threading
from typing import Optional

import numpy as np

from race_planner.models import OccupancyGrid


class EmptyMapError(RuntimeError):
    pass


class OccupancyGridStore:
    """
    Owns the planning grid. Writes are serialised by a lock; readers either
    call the locked point query or take a snapshot copy.
    """

    def __init__(self, grid: OccupancyGrid):
        if grid.data.size == 0:
            raise EmptyMapError("Empty map received")
        if grid.data.size != grid.width * grid.height:
            raise EmptyMapError(
                f"Map data has {grid.data.size} cells, expected {grid.width}x{grid.height}")
        self._grid = grid.copy()
        # binary occupancy, unknown (-1) counts as free
        self._grid.data = np.where(self._grid.data >= 50, OccupancyGrid.OCCUPIED,
                                   OccupancyGrid.FREE).astype(np.int8)
        self._lock = threading.RLock()

    @property
    def width(self):
        return self._grid.width

    @property
    def height(self):
        return self._grid.height

    @property
    def size(self):
        return self._grid.width * self._grid.height

    def cells(self, xs, ys):
        return self._grid.cells(xs, ys)

    def is_occupied(self, x, y) -> Optional[bool]:
        with self._lock:
            return self._grid.is_occupied(x, y)

    def mark_occupied(self, indices) -> np.ndarray:
        """Set cells to occupied; returns the ones that were free before, in input order."""
        indices = np.asarray(indices, dtype=int)
        if indices.size == 0:
            return indices
        if indices.min() < 0 or indices.max() >= self.size:
            raise IndexError("Grid index out of bounds")
        _, first = np.unique(indices, return_index=True)
        ordered = indices[np.sort(first)]
        with self._lock:
            fresh = ordered[self._grid.data[ordered] != OccupancyGrid.OCCUPIED]
            self._grid.data[fresh] = OccupancyGrid.OCCUPIED
        return fresh

    def clear(self, indices):
        indices = np.asarray(indices, dtype=int)
        if indices.size == 0:
            return
        with self._lock:
            self._grid.data[indices] = OccupancyGrid.FREE

    def snapshot(self) -> OccupancyGrid:
        with self._lock:
            return self._grid.copy()

    def to_msg(self, msg):
        """Fill a nav_msgs/OccupancyGrid with the current grid."""
        grid = self.snapshot()
        msg.info.width = grid.width
        msg.info.height = grid.height
        msg.info.resolution = float(grid.resolution)
        msg.info.origin.position.x = float(grid.origin_x)
        msg.info.origin.position.y = float(grid.origin_y)
        msg.info.origin.orientation.w = 1.0
        msg.data = grid.data.tolist()
        return msg
