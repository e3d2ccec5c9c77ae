#!/usr/bin/env python3
import logging
import os
from typing import List

import numpy as np
import pandas as pd

from race_planner.models import GlobalPath, Waypoint


def load_waypoints(path, delimiter=',', default_speed=1.0) -> List[Waypoint]:
    """
    Read `x, y[, heading[, speed]]` records. Header rows and `#` comments are
    skipped; a missing heading follows the path direction.
    """
    df = pd.read_csv(path, sep=delimiter, header=None, comment='#', skipinitialspace=True)
    df = df.apply(pd.to_numeric, errors='coerce').dropna(axis=1, how='all').dropna(how='any')
    if df.empty or df.shape[1] < 2:
        return []

    data = df.to_numpy(dtype=float)
    x, y = data[:, 0], data[:, 1]

    if data.shape[1] >= 3:
        heading = data[:, 2]
    elif len(x) > 1:
        heading = np.arctan2(np.gradient(y), np.gradient(x))
    else:
        heading = np.zeros_like(x)

    speed = data[:, 3] if data.shape[1] >= 4 else np.full_like(x, default_speed)

    return [Waypoint(float(a), float(b), float(h), float(v)) for a, b, h, v in zip(x, y, heading, speed)]


def load_global_path(folder_path, filenames, delimiter=',', default_speed=1.0, logger=None) -> GlobalPath:
    """One track per file, named by the file stem, in the given order."""
    logger = logger or logging.getLogger(__name__)
    global_path = GlobalPath()
    for filename in filenames:
        path = os.path.join(folder_path, filename) if folder_path else filename
        try:
            waypoints = load_waypoints(path, delimiter, default_speed)
        except (FileNotFoundError, pd.errors.EmptyDataError) as e:
            logger.error(f"Could not read waypoints from {path}: {e}")
            continue
        if not waypoints:
            logger.warning(f"No waypoints in {path}")
            continue
        name = os.path.splitext(os.path.basename(path))[0]
        global_path.tracks[name] = waypoints
        logger.info(f"Loaded path '{name}' with {len(waypoints)} waypoints")
    return global_path
