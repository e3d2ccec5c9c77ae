import math
from types import SimpleNamespace

import pytest

from race_planner.models import GlobalPath, Transform2D, Waypoint


def test_waypoint_from_pose_uses_yaw_only():
    position = SimpleNamespace(x=1.0, y=-2.0, z=0.3)
    orientation = SimpleNamespace(x=0.0, y=0.0, z=math.sin(0.4), w=math.cos(0.4))

    wp = Waypoint.from_pose(position, orientation)

    assert (wp.x, wp.y) == (1.0, -2.0)
    assert wp.heading == pytest.approx(0.8)
    assert wp.speed == 0.1


def test_transform_apply_matches_vectorised_version():
    tf = Transform2D(1.0, 2.0, 0.3)
    x, y = tf.apply(0.5, -0.25)
    xs, ys = tf.apply_many([0.5], [-0.25])
    assert (x, y) == pytest.approx((xs[0], ys[0]))


def test_window_of_empty_track():
    assert GlobalPath({'empty': []}).window('empty', 0, 5) == []
