#!/usr/bin/env python3
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

import numpy as np
from tf_transformations import euler_from_quaternion


def yaw_from_quaternion(x, y, z, w):
    _, _, yaw = euler_from_quaternion([x, y, z, w])
    return yaw


@dataclass(frozen=True)
class Waypoint:
    x: float
    y: float
    heading: float = 0.0
    speed: float = 0.1

    @classmethod
    def from_pose(cls, position, orientation, speed=0.1):
        """Waypoint from a geometry_msgs Pose-like (position, orientation) pair."""
        heading = yaw_from_quaternion(orientation.x, orientation.y, orientation.z, orientation.w)
        return cls(float(position.x), float(position.y), heading, speed)


class Role(Enum):
    EGO = 'ego'
    OPPONENT = 'opponent'


@dataclass
class VehicleState:
    role: Role
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0
    velocity: float = 0.0
    angular_velocity: float = 0.0

    def as_array(self):
        return np.array([self.x, self.y, self.theta])


@dataclass
class ScanFrame:
    ranges: np.ndarray
    angle_min: float
    angle_max: float
    angle_increment: float

    @classmethod
    def from_msg(cls, msg):
        return cls(np.asarray(msg.ranges, dtype=float), msg.angle_min, msg.angle_max, msg.angle_increment)

    def __len__(self):
        return len(self.ranges)


@dataclass(frozen=True)
class Transform2D:
    """Planar rigid transform: rotate by yaw, then translate."""
    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0

    @classmethod
    def from_msg(cls, transform):
        t = transform.translation
        q = transform.rotation
        return cls(t.x, t.y, yaw_from_quaternion(q.x, q.y, q.z, q.w))

    def apply(self, px, py):
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return px * c - py * s + self.x, px * s + py * c + self.y

    def apply_many(self, px: np.ndarray, py: np.ndarray):
        px, py = np.asarray(px, dtype=float), np.asarray(py, dtype=float)
        c, s = np.cos(self.yaw), np.sin(self.yaw)
        return px * c - py * s + self.x, px * s + py * c + self.y


@dataclass
class OccupancyGrid:
    width: int
    height: int
    resolution: float
    origin_x: float
    origin_y: float
    data: np.ndarray

    FREE = 0
    OCCUPIED = 100

    @classmethod
    def from_msg(cls, msg):
        info = msg.info
        return cls(info.width, info.height, info.resolution,
                   info.origin.position.x, info.origin.position.y,
                   np.array(msg.data, dtype=np.int8))

    def copy(self):
        return OccupancyGrid(self.width, self.height, self.resolution,
                             self.origin_x, self.origin_y, self.data.copy())

    def cells(self, xs, ys):
        """(columns, rows) of world points; may lie outside the grid."""
        cols = np.floor((np.asarray(xs) - self.origin_x) / self.resolution).astype(int)
        rows = np.floor((np.asarray(ys) - self.origin_y) / self.resolution).astype(int)
        return cols, rows

    def index(self, x, y):
        """Flat index of a world point, or None when it is off the grid."""
        col, row = self.cells(x, y)
        col, row = int(col), int(row)
        if 0 <= col < self.width and 0 <= row < self.height:
            return row * self.width + col
        return None

    def is_occupied(self, x, y):
        """None when the point is off the grid."""
        idx = self.index(x, y)
        if idx is None:
            return None
        return bool(self.data[idx] == self.OCCUPIED)


@dataclass
class LinearizedDynamics:
    Ad: np.ndarray
    Bd: np.ndarray
    hd: np.ndarray
    x_op: np.ndarray
    u_op: np.ndarray


@dataclass
class DriveCommand:
    steering_angle: float
    speed: float
    acceleration: float = 0.0


@dataclass
class GlobalPath:
    """Named candidate paths; dict order is the preference order."""
    tracks: Dict[str, List[Waypoint]] = field(default_factory=dict)

    def __len__(self):
        return len(self.tracks)

    def names(self):
        return list(self.tracks.keys())

    def window(self, name, start_idx, count) -> List[Waypoint]:
        """`count` waypoints from `start_idx`, wrapping around a closed track."""
        track = self.tracks[name]
        if not track:
            return []
        return [track[(start_idx + k) % len(track)] for k in range(count)]


class ControlPhase(Enum):
    IDLE = 'idle'
    BUILD_REFERENCE = 'build_reference'
    LINEARIZE = 'linearize'
    SOLVE = 'solve'
    APPLY = 'apply'
    FALLBACK = 'fallback'
