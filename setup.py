from setuptools import find_packages, setup
import os
from glob import glob

package_name = 'race_planner'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    data_files=[
        ('share/ament_index/resource_index/packages',
            ['resource/' + package_name]),
        ('share/' + package_name, ['package.xml']),
        (os.path.join('share', package_name, 'launch'), glob('launch/*')),
        (os.path.join('share', package_name, 'config'), glob('config/*'))

    ],
    install_requires=[
        'setuptools',
        'numpy',
        'pandas',
        'casadi',
        'PyYAML',
        'tf-transformations',
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    maintainer='siddarth',
    maintainer_email='siddarth.dayasagar@gmail.com',
    description='Local planner and MPC tracker for head-to-head F1/10 racing',
    license='MIT',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'planner = race_planner.planner_node:main',
        ],
    },

)
