#!/usr/bin/env python3
import threading
from dataclasses import replace

from race_planner.models import Role, VehicleState, yaw_from_quaternion


class VehicleTracker:
    """Latest odometry sample for one vehicle. Readers only ever see copies."""

    def __init__(self, role: Role):
        self._state = VehicleState(role)
        self._lock = threading.Lock()
        self.samples = 0

    @property
    def role(self):
        return self._state.role

    def update(self, x, y, quaternion, linear_x, angular_z):
        yaw = yaw_from_quaternion(*quaternion)
        with self._lock:
            self._state.x = float(x)
            self._state.y = float(y)
            self._state.theta = yaw
            self._state.velocity = float(linear_x)
            self._state.angular_velocity = float(angular_z)
            self.samples += 1

    def update_from_odometry(self, msg):
        pose = msg.pose.pose
        q = pose.orientation
        self.update(pose.position.x, pose.position.y, (q.x, q.y, q.z, q.w),
                    msg.twist.twist.linear.x, msg.twist.twist.angular.z)

    def snapshot(self) -> VehicleState:
        with self._lock:
            return replace(self._state)

    @property
    def has_state(self):
        return self.samples > 0
