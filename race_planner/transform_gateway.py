#!/usr/bin/env python3
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from race_planner.models import Transform2D


class TransformUnavailable(RuntimeError):
    pass


class TransformGateway:
    """
    Planar transforms between named frames.

    `lookup(target, source)` returns a TransformStamped-like object or raises
    one of `errors`. Failures are logged, followed by a short sleep, and the
    last good transform for the pair is returned instead.
    """

    def __init__(self, lookup: Callable, errors: Tuple = (Exception,), retry_sleep=0.1, logger=None):
        self._lookup = lookup
        self._errors = tuple(errors)
        self.retry_sleep = retry_sleep
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[Tuple[str, str], Transform2D] = {}
        self._lock = threading.Lock()

    def lookup(self, target, source) -> Transform2D:
        """Fresh transform or TransformUnavailable."""
        try:
            t = self._lookup(target, source)
        except self._errors as e:
            raise TransformUnavailable(f"{source} -> {target}: {e}") from e
        tf = Transform2D.from_msg(t.transform)
        with self._lock:
            self._cache[(target, source)] = tf
        return tf

    def lookup_or_cached(self, target, source) -> Optional[Transform2D]:
        try:
            return self.lookup(target, source)
        except TransformUnavailable as e:
            self.logger.warning(f"TF Lookup failed: {e}")
            if self.retry_sleep > 0:
                time.sleep(self.retry_sleep)
            return self.cached(target, source)

    def cached(self, target, source) -> Optional[Transform2D]:
        with self._lock:
            return self._cache.get((target, source))
