"""Incremental EWMA estimate of the gap between check-ins.

Single pass, constant memory: each new gap nudges the mean by ``ALPHA`` of
its distance from the current mean, and the variance follows the matching
exponentially weighted update (Finch, "Incremental calculation of weighted
mean and variance", 2009).
"""

from __future__ import annotations

import math

ALPHA = 0.15


class IntervalEstimator:
    """Running mean and standard deviation of inter-arrival gaps, in seconds."""

    def __init__(self, mean: float = 0.0, stddev: float = 0.0) -> None:
        self.mean = mean
        # Only stddev is persisted, so variance is rebuilt from it.
        self.variance = stddev * stddev
        self.stddev = stddev

    def update(self, measured: float) -> None:
        diff = measured - self.mean
        incr = ALPHA * diff
        self.mean = self.mean + incr
        self.variance = (1 - ALPHA) * (self.variance + diff * incr)
        self.stddev = math.sqrt(self.variance)
