#!/usr/bin/env python3
import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from race_planner.models import ScanFrame


class GapFollower:
    """
    Follow-the-gap over the forward 180 degrees of the scan.

    The truncation window is computed from the first scan and reused; scans
    are expected to keep the same layout for the lifetime of the planner.
    """

    def __init__(self, bubble_radius=0.40, gap_threshold=2.0, gap_size_threshold=30,
                 max_scan=5.0, logger=None):
        self.bubble_radius = bubble_radius
        self.gap_threshold = gap_threshold
        self.gap_size_threshold = gap_size_threshold
        self.max_scan = max_scan
        self.logger = logger or logging.getLogger(__name__)

        self.truncate = False
        self.start_idx = 0
        self.end_idx = 0
        self.angle_increment = 0.0

        self.steering_options: List[float] = []

    def truncation_window(self, scan: ScanFrame) -> Tuple[int, int]:
        if not self.truncate:
            n = len(scan)
            fov = scan.angle_max - scan.angle_min
            truncate_size = n if fov <= 0 else min(n, int(math.pi / fov * n))

            self.start_idx = n // 2 - truncate_size // 2
            self.end_idx = n // 2 + truncate_size // 2
            self.angle_increment = scan.angle_increment
            self.truncate = True
            self.logger.debug(f"Truncated scan to indices [{self.start_idx}, {self.end_idx})")
        return self.start_idx, self.end_idx

    def filter_ranges(self, ranges) -> np.ndarray:
        ranges = np.array(ranges, dtype=float)
        ranges[np.isnan(ranges)] = 0.0
        ranges[(ranges > self.max_scan) | np.isinf(ranges)] = self.max_scan
        return ranges

    @staticmethod
    def closest_point(ranges: np.ndarray) -> int:
        return int(np.argmin(ranges))

    def eliminate_bubble(self, ranges: np.ndarray, closest_idx, closest_dist):
        """Zero every reading within the safety bubble of the closest obstacle, in place."""
        if closest_dist <= 0.0:
            ranges[:] = 0.0
            return ranges
        half = int(round(self.bubble_radius / closest_dist / self.angle_increment))
        start = max(0, closest_idx - half)
        end = min(len(ranges) - 1, closest_idx + half)
        ranges[start:end + 1] = 0.0
        return ranges

    def find_gaps(self, ranges: np.ndarray) -> List[int]:
        """Midpoint index of every free run longer than `gap_size_threshold`."""
        best_idx = []
        current_idx = 0
        while current_idx < len(ranges):
            current_start = current_idx
            current_size = 0
            while current_idx < len(ranges) and ranges[current_idx] > self.gap_threshold:
                current_size += 1
                current_idx += 1

            if current_size > self.gap_size_threshold:
                best_idx.append((current_start + current_start + current_size - 1) // 2)

            if current_size == 0:
                current_idx += 1
        return best_idx

    def plan(self, scan: ScanFrame) -> List[float]:
        """
        Candidate headings for one scan. Concurrent calls each get the headings
        of their own scan; `steering_options` holds the last completed list.
        """
        options = []
        if len(scan) == 0:
            self.logger.warning("Empty scan, no reactive heading")
            self.steering_options = options
            return options

        start, end = self.truncation_window(scan)
        filtered_ranges = self.filter_ranges(scan.ranges[start:end])
        if filtered_ranges.size > 0:
            closest_idx = self.closest_point(filtered_ranges)
            self.eliminate_bubble(filtered_ranges, closest_idx, filtered_ranges[closest_idx])

            center = len(filtered_ranges) // 2
            options = [self.angle_increment * (idx - center) for idx in self.find_gaps(filtered_ranges)]

        if not options:
            self.logger.debug("No navigable gap found")
        self.steering_options = options
        return options

    def best_option(self, target=0.0) -> Optional[float]:
        """Candidate heading closest to `target`, None if there is none."""
        if not self.steering_options:
            return None
        return min(self.steering_options, key=lambda h: abs(h - target))
