################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Timestamps and clocks.

Timestamps are integer nanoseconds from an arbitrary epoch. They may be
negative; only ordering and differences are meaningful.
"""

from __future__ import annotations

import math
import time


class TimeBaseError(Exception):
    """Raised when time conversions or clock updates fail."""


def sec_to_ns(t_sec: float) -> int:
    """Convert seconds to integer nanoseconds with deterministic rounding.

    Rounds to the nearest integer nanosecond using Python's built-in round
    (ties-to-even) to keep conversion stable across runs.
    """
    if not math.isfinite(t_sec):
        raise TimeBaseError("Seconds must be finite")
    return int(round(t_sec * 1e9))


def ns_to_sec(t_ns: int) -> float:
    """Convert integer nanoseconds to seconds."""
    return float(t_ns) / 1e9


class Clock:
    """Source of the current time in nanoseconds."""

    def now_ns(self) -> int:
        raise NotImplementedError


class MonotonicClock(Clock):
    """Clock backed by the process monotonic clock."""

    def now_ns(self) -> int:
        return time.monotonic_ns()


class ManualClock(Clock):
    """Clock that only moves when told to, for replay and tests."""

    def __init__(self, t_ns: int = 0) -> None:
        self._t_ns: int = int(t_ns)

    def now_ns(self) -> int:
        return self._t_ns

    def set_ns(self, t_ns: int) -> None:
        """Move the clock to an absolute time, never backwards."""
        if t_ns < self._t_ns:
            raise TimeBaseError("Manual clock cannot move backwards")
        self._t_ns = int(t_ns)

    def set_sec(self, t_sec: float) -> None:
        self.set_ns(sec_to_ns(t_sec))

    def advance_ns(self, dt_ns: int) -> None:
        self.set_ns(self._t_ns + dt_ns)
