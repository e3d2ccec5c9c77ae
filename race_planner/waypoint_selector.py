#!/usr/bin/env python3
import logging
import math
from typing import List, Optional, Sequence

from race_planner.models import GlobalPath, OccupancyGrid, Transform2D, Waypoint


class WaypointSelector:
    """Picks, per path, the forward waypoint whose distance best matches the lookahead."""

    def __init__(self, lookahead_distance=2.5, logger=None):
        self.lookahead_distance = lookahead_distance
        self.logger = logger or logging.getLogger(__name__)

    def find_waypoint_idx(self, track: Sequence[Waypoint], map_to_laser: Transform2D,
                          grid: OccupancyGrid) -> Optional[int]:
        waypoint_d = math.inf
        waypoint_idx = None

        for j, waypoint in enumerate(track):
            x, y = map_to_laser.apply(waypoint.x, waypoint.y)
            if x < 0:
                continue

            diff = abs(self.lookahead_distance - math.hypot(x, y))
            if diff < waypoint_d:
                # off-grid counts as blocked
                if grid.is_occupied(waypoint.x, waypoint.y) is not False:
                    continue
                waypoint_d = diff
                waypoint_idx = j

        return waypoint_idx

    def select_indices(self, global_path: GlobalPath, map_to_laser: Transform2D,
                       grid: OccupancyGrid) -> List[Optional[int]]:
        return [self.find_waypoint_idx(track, map_to_laser, grid)
                for track in global_path.tracks.values()]

    def select(self, global_path: GlobalPath, map_to_laser: Transform2D,
               grid: OccupancyGrid) -> List[Optional[Waypoint]]:
        waypoints = []
        for name, idx in zip(global_path.names(), self.select_indices(global_path, map_to_laser, grid)):
            if idx is None:
                self.logger.debug(f"No feasible waypoint on path '{name}'")
                waypoints.append(None)
            else:
                waypoints.append(global_path.tracks[name][idx])
        return waypoints

    def check_feasibility(self, global_path: GlobalPath, map_to_laser: Transform2D,
                          grid: OccupancyGrid):
        """
        First path (in preference order) with a feasible lookahead waypoint.

        Returns (path name, waypoint index) or None when every path is blocked
        or behind the vehicle.
        """
        for name, idx in zip(global_path.names(), self.select_indices(global_path, map_to_laser, grid)):
            if idx is not None:
                return name, idx
        return None
