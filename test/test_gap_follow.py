import math
import sys
import threading

import numpy as np
import pytest

from race_planner.gap_follow import GapFollower
from race_planner.models import ScanFrame


def make_scan(ranges):
    ranges = np.asarray(ranges, dtype=float)
    return ScanFrame(ranges, -math.pi / 2, math.pi / 2, math.pi / len(ranges))


def test_filter_removes_nan_and_clamps_to_max_scan():
    planner = GapFollower(max_scan=5.0)
    filtered = planner.filter_ranges([np.nan, np.inf, 12.0, 3.0, -np.inf])
    assert not np.any(np.isnan(filtered))
    assert np.all(filtered <= 5.0)
    assert filtered[0] == 0.0
    assert filtered[1] == 5.0
    assert filtered[2] == 5.0
    assert filtered[3] == 3.0


def test_truncation_window_covers_forward_half_of_full_scan():
    n = 360
    planner = GapFollower()
    scan = ScanFrame(np.ones(n), -math.pi, math.pi, 2 * math.pi / n)
    assert planner.truncation_window(scan) == (90, 270)

    # cached after the first call
    other = ScanFrame(np.ones(100), -math.pi, math.pi, 2 * math.pi / 100)
    assert planner.truncation_window(other) == (90, 270)


def test_bubble_zeroes_indices_within_half_width():
    planner = GapFollower(bubble_radius=0.4)
    planner.angle_increment = 0.01
    ranges = np.full(200, 3.0)

    planner.eliminate_bubble(ranges, 100, 2.0)

    assert np.all(ranges[80:121] == 0.0)
    assert ranges[79] == 3.0
    assert ranges[121] == 3.0


def test_bubble_is_clamped_to_window():
    planner = GapFollower(bubble_radius=0.4)
    planner.angle_increment = 0.01
    ranges = np.full(50, 3.0)

    planner.eliminate_bubble(ranges, 5, 2.0)
    assert np.all(ranges[:26] == 0.0)
    assert ranges[26] == 3.0

    ranges = np.full(50, 3.0)
    planner.eliminate_bubble(ranges, 45, 2.0)
    assert np.all(ranges[25:] == 0.0)
    assert ranges[24] == 3.0


def test_obstacle_at_zero_range_blocks_everything():
    planner = GapFollower()
    planner.angle_increment = 0.01
    ranges = np.full(20, 3.0)
    planner.eliminate_bubble(ranges, 3, 0.0)
    assert np.all(ranges == 0.0)


@pytest.mark.parametrize("length, expected", [(10, []), (11, [35]), (12, [35]), (40, [49])])
def test_gap_found_only_above_size_threshold(length, expected):
    planner = GapFollower(gap_threshold=2.0, gap_size_threshold=10)
    ranges = np.full(100, 0.1)
    ranges[30:30 + length] = 4.0
    assert planner.find_gaps(ranges) == expected


def test_gap_at_end_of_window():
    planner = GapFollower(gap_threshold=2.0, gap_size_threshold=3)
    ranges = np.array([0.0, 0.0, 3.0, 3.0, 3.0, 3.0, 3.0])
    assert planner.find_gaps(ranges) == [4]


def test_plan_returns_heading_of_gap_midpoint():
    planner = GapFollower(bubble_radius=0.4, gap_threshold=2.0, gap_size_threshold=30, max_scan=5.0)
    ranges = np.full(200, 0.5)
    ranges[60:100] = 3.0
    scan = make_scan(ranges)

    headings = planner.plan(scan)

    assert headings == pytest.approx([scan.angle_increment * (79 - 100)])


def test_plan_without_gap_is_empty():
    planner = GapFollower(gap_threshold=2.0, gap_size_threshold=30)
    assert planner.plan(make_scan(np.full(200, 1.0))) == []
    assert planner.best_option() is None


def test_candidates_reset_every_cycle():
    planner = GapFollower(bubble_radius=0.4, gap_threshold=2.0, gap_size_threshold=30)
    ranges = np.full(200, 0.5)
    ranges[60:100] = 3.0
    scan = make_scan(ranges)

    first = list(planner.plan(scan))
    second = list(planner.plan(scan))

    assert len(second) == 1
    assert first == second


def test_best_option_prefers_heading_closest_to_target():
    planner = GapFollower()
    planner.steering_options = [-0.4, 0.1, 0.3]
    assert planner.best_option() == 0.1
    assert planner.best_option(0.35) == 0.3


def test_concurrent_plans_keep_their_own_headings():
    planner = GapFollower(bubble_radius=0.4, gap_threshold=2.0, gap_size_threshold=30, max_scan=5.0)
    blocked = make_scan(np.full(200, 1.0))
    ranges = np.full(200, 0.5)
    ranges[60:100] = 3.0
    open_scan = make_scan(ranges)
    expected_open = GapFollower(bubble_radius=0.4, gap_threshold=2.0, gap_size_threshold=30,
                                max_scan=5.0).plan(open_scan)
    assert len(expected_open) == 1

    mismatches = []

    def run(scan, expected):
        for _ in range(300):
            headings = planner.plan(scan)
            if headings != expected:
                mismatches.append(headings)

    interval = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    try:
        threads = [threading.Thread(target=run, args=(blocked, [])),
                   threading.Thread(target=run, args=(open_scan, expected_open))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    finally:
        sys.setswitchinterval(interval)

    assert mismatches == []
