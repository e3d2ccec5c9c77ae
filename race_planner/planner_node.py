#!/usr/bin/env python3
import threading
from dataclasses import fields

import rclpy
from rclpy.node import Node
from rclpy.callback_groups import MutuallyExclusiveCallbackGroup, ReentrantCallbackGroup
from rclpy.duration import Duration
from rclpy.executors import MultiThreadedExecutor
from rclpy.qos import QoSProfile, QoSDurabilityPolicy, QoSReliabilityPolicy
from rclpy.time import Time
from sensor_msgs.msg import LaserScan
from nav_msgs.msg import OccupancyGrid as OccupancyGridMsg, Odometry
from ackermann_msgs.msg import AckermannDriveStamped
from tf2_ros import Buffer, TransformListener, LookupException, ConnectivityException, ExtrapolationException

from race_planner.command_selector import CommandSelector
from race_planner.config import PlannerConfig
from race_planner.gap_follow import GapFollower
from race_planner.map_maintainer import MapMaintainer
from race_planner.models import OccupancyGrid, Role, ScanFrame
from race_planner.mpc_controller import MpcController
from race_planner.occupancy_grid import EmptyMapError, OccupancyGridStore
from race_planner.state_tracker import VehicleTracker
from race_planner.transform_gateway import TransformGateway, TransformUnavailable
from race_planner.waypoint_selector import WaypointSelector
from race_planner.waypoint_storage import load_global_path


class Planner(Node):
    def __init__(self):
        super().__init__('planner')

        # ─── ROS PARAMETERS ─────────────────────────────────
        defaults = PlannerConfig()
        for f in fields(PlannerConfig):
            self.declare_parameter(f.name, getattr(defaults, f.name))
        self.config = PlannerConfig.from_dict(
            {f.name: self.get_parameter(f.name).value for f in fields(PlannerConfig)}, self.get_logger())
        cfg = self.config
        # ────────────────────────────────────────────────────

        self.ego_car = VehicleTracker(Role.EGO)
        self.opp_car = VehicleTracker(Role.OPPONENT)

        self.tf_buffer = Buffer()
        self.tf_listener = TransformListener(self.tf_buffer, self)
        self.tf = TransformGateway(
            self._lookup_transform,
            (LookupException, ConnectivityException, ExtrapolationException),
            cfg.tf_retry_sleep, self.get_logger())

        self.get_logger().info("Reading waypoint data...")
        self.global_path = load_global_path(cfg.folder_path, cfg.waypoint_files, cfg.delimiter,
                                            cfg.default_speed, self.get_logger())
        if not len(self.global_path):
            self.get_logger().warning("No global path loaded, running reactive only")

        self.map_store = None
        self.map_maintainer = None
        self.gap_follower = GapFollower(cfg.bubble_radius, cfg.gap_threshold, cfg.gap_size_threshold,
                                        cfg.max_scan, self.get_logger())
        self.waypoint_selector = WaypointSelector(cfg.lookahead_distance, self.get_logger())
        self.mpc = MpcController.from_config(cfg, logger=self.get_logger())
        self.command_selector = CommandSelector.from_config(cfg, self.get_logger())

        self.steering_options = []
        self._options_lock = threading.Lock()

        map_qos = QoSProfile(
            reliability=QoSReliabilityPolicy.RELIABLE,
            durability=QoSDurabilityPolicy.TRANSIENT_LOCAL,
            depth=1
        )
        sensor_group = ReentrantCallbackGroup()
        control_group = MutuallyExclusiveCallbackGroup()

        # Publishers
        self.drive_pub = self.create_publisher(AckermannDriveStamped, cfg.drive_topic, 1)
        self.map_pub = self.create_publisher(OccupancyGridMsg, cfg.costmap, 1)

        # Subscribers
        self.create_subscription(OccupancyGridMsg, cfg.map, self.map_callback, map_qos)
        self.create_subscription(LaserScan, cfg.scan_topic, self.scan_callback, 1,
                                 callback_group=sensor_group)
        self.create_subscription(Odometry, cfg.ego_odom, self.ego_odom_callback, 1,
                                 callback_group=sensor_group)
        self.create_subscription(Odometry, cfg.opp_odom, self.opp_odom_callback, 1,
                                 callback_group=sensor_group)

        self.create_timer(cfg.dt, self.control_callback, callback_group=control_group)

        self.get_logger().info(f"Planner started (use_mpc={cfg.use_mpc})")

    def _lookup_transform(self, target, source):
        return self.tf_buffer.lookup_transform(target, source, Time(),
                                               timeout=Duration(seconds=self.config.tf_timeout))

    def map_callback(self, msg: OccupancyGridMsg):
        if self.map_store is not None:
            return
        try:
            self.map_store = OccupancyGridStore(OccupancyGrid.from_msg(msg))
        except EmptyMapError as e:
            self.get_logger().fatal(f"{e}")
            raise
        self.map_maintainer = MapMaintainer(self.map_store, self.config.inflation_radius,
                                            self.config.decay_period, self.get_logger())
        self.get_logger().info(f"Received first map ({msg.info.width}x{msg.info.height})")

    def scan_callback(self, msg: LaserScan):
        scan = ScanFrame.from_msg(msg)
        if len(scan) == 0:
            self.get_logger().warning("Empty scan received, skipping cycle")
            return

        if self.map_maintainer is not None:
            try:
                laser_to_map = self.tf.lookup(self.config.map_frame, self.config.ego_laser)
            except TransformUnavailable as e:
                self.get_logger().warning(f"TF Lookup failed: {e}")
                laser_to_map = None
            if self.map_maintainer.update(scan, laser_to_map):
                self.map_pub.publish(self.map_store.to_msg(OccupancyGridMsg()))

        options = list(self.gap_follower.plan(scan))
        with self._options_lock:
            self.steering_options = options

    def ego_odom_callback(self, msg: Odometry):
        self.ego_car.update_from_odometry(msg)

    def opp_odom_callback(self, msg: Odometry):
        self.opp_car.update_from_odometry(msg)

    def control_callback(self):
        if self.map_store is None or not self.ego_car.has_state:
            return
        cfg = self.config
        state = self.ego_car.snapshot()
        grid = self.map_store.snapshot()
        with self._options_lock:
            steering_options = list(self.steering_options)

        map_to_laser = self.tf.lookup_or_cached(cfg.ego_laser, cfg.map_frame)

        waypoint = None
        mpc_command = None
        choice = None
        if map_to_laser is not None and len(self.global_path):
            choice = self.waypoint_selector.check_feasibility(self.global_path, map_to_laser, grid)
        if choice is None:
            self.get_logger().debug("No feasible waypoint, using reactive planner only")
        else:
            name, idx = choice
            waypoint = self.global_path.tracks[name][idx]
            if cfg.use_mpc:
                reference = self.global_path.window(name, idx, self.mpc.N + 1)
                mpc_command = self.mpc.control(reference, state)
                if mpc_command is None:
                    self.get_logger().warning("MPC infeasible, falling back to reactive control")

        opp_in_ego = None
        opponent = None
        if self.opp_car.has_state:
            opp_tf = self.tf.lookup_or_cached(cfg.ego_car, cfg.opp_car)
            if opp_tf is not None:
                opp_in_ego = (opp_tf.x, opp_tf.y)
                opponent = self.opp_car.snapshot()

        command = self.command_selector.select(mpc_command, waypoint, map_to_laser, steering_options,
                                               opp_in_ego, opponent)

        msg = AckermannDriveStamped()
        msg.header.stamp = self.get_clock().now().to_msg()
        msg.drive.steering_angle = command.steering_angle
        msg.drive.speed = command.speed
        msg.drive.acceleration = command.acceleration
        self.drive_pub.publish(msg)
        self.get_logger().debug(
            f"Sending command → Speed: {command.speed:.2f}, Steering: {command.steering_angle:.3f}")


def main(args=None):
    rclpy.init(args=args)
    node = Planner()
    executor = MultiThreadedExecutor()
    executor.add_node(node)
    try:
        executor.spin()
    except KeyboardInterrupt:
        pass
    finally:
        node.destroy_node()
        rclpy.shutdown()


if __name__ == '__main__':
    main()
