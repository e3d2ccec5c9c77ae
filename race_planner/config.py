#!/usr/bin/env python3
import logging
from dataclasses import dataclass, field, fields
from typing import List

import yaml


@dataclass
class PlannerConfig:
    # ─── Reactive planner / map ─────────────────────────
    lookahead_distance: float = 2.5
    bubble_radius: float = 0.40
    gap_threshold: float = 2.0
    gap_size_threshold: int = 30
    inflation_radius: int = 3
    max_scan: float = 5.0
    decay_period: int = 50            # scan callbacks before new obstacles are cleared

    # ─── Blending ───────────────────────────────────────
    alpha: float = 0.8                # pursuit weight vs. gap heading
    ref_alpha: float = 0.3            # waypoint speed weight in the MPC reference
    max_acc: float = 9.51
    use_mpc: bool = False

    # ─── Global path ────────────────────────────────────
    folder_path: str = ''
    waypoint_files: List[str] = field(default_factory=lambda: ['pp.csv'])
    delimiter: str = ','
    default_speed: float = 1.0

    # ─── Vehicle / MPC ──────────────────────────────────
    wheelbase: float = 0.33
    dt: float = 0.05
    horizon: int = 10
    max_steer: float = 0.4
    v_min: float = 0.5
    v_max: float = 5.0
    state_weight: List[float] = field(default_factory=lambda: [10.0, 10.0, 2.0])
    terminal_weight: List[float] = field(default_factory=lambda: [20.0, 20.0, 4.0])
    input_weight: List[float] = field(default_factory=lambda: [0.1, 0.1])
    input_rate_weight: List[float] = field(default_factory=lambda: [1.0, 0.1])
    corridor_width: float = 0.0       # 0 disables the position corridor
    qp_solver: str = 'osqp'
    qp_max_iter: int = 4000
    qp_time_budget: float = 0.04      # seconds

    # ─── Opponent ───────────────────────────────────────
    follow_distance: float = 1.5

    # ─── TF ─────────────────────────────────────────────
    tf_timeout: float = 0.05
    tf_retry_sleep: float = 0.1

    # ─── Topics ─────────────────────────────────────────
    scan_topic: str = '/scan'
    ego_odom: str = '/odom'
    opp_odom: str = '/opp_odom'
    map: str = '/map'
    drive_topic: str = '/drive'
    costmap: str = '/costmap'

    # ─── Frames ─────────────────────────────────────────
    map_frame: str = 'map'
    ego_car: str = 'ego_racecar/base_link'
    opp_car: str = 'opp_racecar/base_link'
    ego_laser: str = 'ego_racecar/laser'

    @classmethod
    def from_dict(cls, values, logger=None):
        logger = logger or logging.getLogger(__name__)
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key in known:
                kwargs[key] = value
            else:
                logger.warning(f"Ignoring unknown planner parameter '{key}'")
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path, logger=None):
        """Load a flat parameter file or a ROS 2 `ros__parameters` file."""
        with open(path, 'r') as f:
            cfg = yaml.safe_load(f) or {}
        for block in cfg.values() if isinstance(cfg, dict) else []:
            if isinstance(block, dict) and 'ros__parameters' in block:
                cfg = block['ros__parameters']
                break
        return cls.from_dict(cfg, logger)
