#!/usr/bin/env python3
import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from race_planner.models import DriveCommand, Transform2D, VehicleState, Waypoint


def pursuit_steering(local_x, local_y, lookahead, wheelbase):
    """Pure pursuit steering towards a point given in the vehicle frame."""
    alpha = math.atan2(local_y, local_x)
    kappa = 2.0 * math.sin(alpha) / max(lookahead, 1e-6)
    return math.atan(wheelbase * kappa)


class CommandSelector:
    """
    Chooses the drive command for one control cycle: the MPC result when there
    is one, otherwise a blend of pure pursuit and the reactive gap heading.
    """

    def __init__(self, alpha=0.8, lookahead_distance=2.5, wheelbase=0.33, max_steer=0.4,
                 v_min=0.5, follow_distance=1.5, v_max=5.0, logger=None):
        self.alpha = alpha
        self.lookahead_distance = lookahead_distance
        self.wheelbase = wheelbase
        self.max_steer = max_steer
        self.v_min = v_min
        self.v_max = v_max
        self.follow_distance = follow_distance
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger=None):
        return cls(config.alpha, config.lookahead_distance, config.wheelbase, config.max_steer,
                   config.v_min, config.follow_distance, config.v_max, logger)

    def reactive(self, waypoint: Optional[Waypoint], map_to_laser: Optional[Transform2D],
                 gap_headings: Sequence[float]) -> DriveCommand:
        pursuit = None
        if waypoint is not None and map_to_laser is not None:
            local_x, local_y = map_to_laser.apply(waypoint.x, waypoint.y)
            pursuit = pursuit_steering(local_x, local_y, self.lookahead_distance, self.wheelbase)

        if pursuit is not None and gap_headings:
            gap = min(gap_headings, key=lambda h: abs(h - pursuit))
            steer = self.alpha * pursuit + (1.0 - self.alpha) * gap
            speed = waypoint.speed
        elif pursuit is not None:
            steer = pursuit
            speed = waypoint.speed
        elif gap_headings:
            steer = min(gap_headings, key=abs)
            speed = self.v_min
        else:
            self.logger.warning("No waypoint and no gap, holding heading")
            steer, speed = 0.0, 0.0

        return DriveCommand(float(np.clip(steer, -self.max_steer, self.max_steer)),
                            float(np.clip(speed, 0.0, self.v_max)))

    def limit_for_opponent(self, command: DriveCommand, opp_in_ego: Optional[Tuple[float, float]],
                           opponent: Optional[VehicleState]) -> DriveCommand:
        """Do not drive faster than an opponent that is close ahead."""
        if opp_in_ego is None or opponent is None:
            return command
        ox, oy = opp_in_ego
        if ox > 0.0 and math.hypot(ox, oy) < self.follow_distance and command.speed > opponent.velocity:
            self.logger.debug(f"Opponent {math.hypot(ox, oy):.2f} m ahead, capping speed")
            return DriveCommand(command.steering_angle, max(opponent.velocity, 0.0), command.acceleration)
        return command

    def select(self, mpc_command: Optional[DriveCommand], waypoint: Optional[Waypoint],
               map_to_laser: Optional[Transform2D], gap_headings: Sequence[float],
               opp_in_ego=None, opponent: Optional[VehicleState] = None) -> DriveCommand:
        command = mpc_command if mpc_command is not None else self.reactive(waypoint, map_to_laser, gap_headings)
        return self.limit_for_opponent(command, opp_in_ego, opponent)
