import os

from ament_index_python.packages import get_package_share_directory
from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument
from launch.substitutions import LaunchConfiguration
from launch_ros.actions import Node


def generate_launch_description():
    planner_dir = get_package_share_directory('race_planner')
    params_file = os.path.join(planner_dir, 'config', 'params.yaml')

    map_yaml = LaunchConfiguration('map_yaml')
    use_sim_time = LaunchConfiguration('use_sim_time')

    return LaunchDescription([
        DeclareLaunchArgument('map_yaml', description='Track map used for planning'),
        DeclareLaunchArgument('use_sim_time', default_value='true'),

        # Map Server (Planning)
        Node(
            package='nav2_map_server',
            executable='map_server',
            name='map_server_planning',
            output='screen',
            parameters=[{
                'yaml_filename': map_yaml,
                'frame_id': 'map',
                'use_sim_time': use_sim_time,
            }],
        ),

        # Lifecycle Manager (bring up the map server)
        Node(
            package='nav2_lifecycle_manager',
            executable='lifecycle_manager',
            name='lifecycle_manager_planning',
            output='screen',
            parameters=[{
                'use_sim_time': use_sim_time,
                'autostart': True,
                'node_names': ['map_server_planning'],
            }],
        ),

        Node(
            package='race_planner',
            executable='planner',
            name='planner',
            output='screen',
            emulate_tty=True,
            parameters=[params_file, {'use_sim_time': use_sim_time}],
        ),
    ])
