#!/usr/bin/env python3
import logging
import threading
from typing import List, Optional

import numpy as np

from race_planner.models import ScanFrame, Transform2D
from race_planner.occupancy_grid import OccupancyGridStore


class MapMaintainer:
    """
    Writes inflated scan hits into the grid and clears them again after
    `decay_period` updates, so obstacles seen once do not block forever.
    """

    def __init__(self, store: OccupancyGridStore, inflation_radius=3, decay_period=50, logger=None):
        self.store = store
        self.inflation_radius = int(inflation_radius)
        self.decay_period = int(decay_period)
        self.logger = logger or logging.getLogger(__name__)

        self.new_obstacles: List[int] = []
        self.clear_obstacles_count = 0
        self._update_lock = threading.Lock()

        r = np.arange(-self.inflation_radius, self.inflation_radius + 1)
        self._offsets_col, self._offsets_row = [a.ravel() for a in np.meshgrid(r, r)]

    def scan_to_map(self, scan: ScanFrame, laser_to_map: Transform2D):
        n = len(scan)
        start, end = n // 6, 5 * n // 6
        hits = scan.ranges[start:end]
        theta = scan.angle_min + np.arange(start, end) * scan.angle_increment

        valid = np.isfinite(hits)
        hits, theta = hits[valid], theta[valid]

        x_base_link = hits * np.cos(theta)
        y_base_link = hits * np.sin(theta)
        return laser_to_map.apply_many(x_base_link, y_base_link)

    def expand_obstacles(self, x_map, y_map) -> np.ndarray:
        """Flat indices of the inflated neighbourhood of every hit, off-grid cells dropped."""
        cols, rows = self.store.cells(np.atleast_1d(x_map), np.atleast_1d(y_map))
        cols = (cols[:, None] + self._offsets_col[None, :]).ravel()
        rows = (rows[:, None] + self._offsets_row[None, :]).ravel()

        inside = (cols >= 0) & (cols < self.store.width) & (rows >= 0) & (rows < self.store.height)
        return rows[inside] * self.store.width + cols[inside]

    def update(self, scan: ScanFrame, laser_to_map: Optional[Transform2D]):
        if laser_to_map is None:
            self.logger.warning("No laser to map transform, keeping previous map")
            return False
        if len(scan) == 0:
            self.logger.warning("Empty scan, skipping map update")
            return False

        x_map, y_map = self.scan_to_map(scan, laser_to_map)
        with self._update_lock:
            fresh = self.store.mark_occupied(self.expand_obstacles(x_map, y_map))
            self.new_obstacles.extend(int(i) for i in fresh)

            self.clear_obstacles_count += 1
            if self.clear_obstacles_count > self.decay_period:
                self.store.clear(self.new_obstacles)
                self.logger.debug(f"Cleared {len(self.new_obstacles)} transient obstacle cells")
                self.new_obstacles = []
                self.clear_obstacles_count = 0

        self.logger.debug("Map updated")
        return True
