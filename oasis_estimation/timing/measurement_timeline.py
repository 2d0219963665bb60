################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Per-residual buffer of timestamped measurements.

The timeline keeps the measurements of one residual ordered by timestamp and
tracks the time up to which they have been consumed. A measurement stamped
``t`` of a transition residual governs the interval that ends at ``t`` and
starts at the previous evaluation time.

Invariants:
    - Timestamps are unique and iterate in increasing order
    - The last processed time never decreases
    - No measurement at or before the last processed time is stored
"""

from __future__ import annotations

import bisect
import logging
from typing import Optional

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.model.residual import Residual
from oasis_estimation.timing.time_base import sec_to_ns


_LOG: logging.Logger = logging.getLogger(__name__)

# Longest time to wait for a sparse stream before forcing progress
DEFAULT_MAX_WAIT_NS: int = sec_to_ns(0.1)
# Settling delay before trusting that no earlier measurement will arrive
DEFAULT_MIN_WAIT_NS: int = 0


class MeasurementTimelineError(Exception):
    """Raised when timeline ordering or split/merge contracts are violated."""


class MeasurementTimeline:
    """Ordered timestamp to measurement map with a wait-time policy."""

    def __init__(
        self,
        max_wait_ns: int = DEFAULT_MAX_WAIT_NS,
        min_wait_ns: int = DEFAULT_MIN_WAIT_NS,
    ) -> None:
        if min_wait_ns < 0:
            raise MeasurementTimelineError("min wait must be non-negative")
        if max_wait_ns < min_wait_ns:
            raise MeasurementTimelineError("max wait must not be below min wait")
        self._max_wait_ns: int = int(max_wait_ns)
        self._min_wait_ns: int = int(min_wait_ns)
        self._times: list[int] = []
        self._measurements: dict[int, ElementVector] = {}
        self._last_processed_ns: Optional[int] = None
        self.diagnostics: dict[str, int] = {
            "reject_stale": 0,
            "split": 0,
            "merged": 0,
            "removed": 0,
        }

    @property
    def max_wait_ns(self) -> int:
        return self._max_wait_ns

    @property
    def min_wait_ns(self) -> int:
        return self._min_wait_ns

    @property
    def last_processed_time(self) -> Optional[int]:
        """Timestamp up to which measurements are consumed, if any."""
        return self._last_processed_ns

    def __len__(self) -> int:
        return len(self._times)

    def __contains__(self, t_ns: object) -> bool:
        return t_ns in self._measurements

    def times(self) -> list[int]:
        return list(self._times)

    def measurement_at(self, t_ns: int) -> Optional[ElementVector]:
        return self._measurements.get(t_ns)

    def next_time(self, t_ns: int) -> Optional[int]:
        """Return the first stored timestamp strictly after ``t_ns``."""
        idx: int = bisect.bisect_right(self._times, t_ns)
        if idx >= len(self._times):
            return None
        return self._times[idx]

    def times_in_range(self, start_ns: int, end_ns: int) -> list[int]:
        """Return stored timestamps in ``(start_ns, end_ns]``."""
        lo: int = bisect.bisect_right(self._times, start_ns)
        hi: int = bisect.bisect_right(self._times, end_ns)
        return self._times[lo:hi]

    def add_measurement(self, meas: ElementVector, t_ns: int) -> bool:
        """Insert a measurement, returning False when it is stale.

        A measurement at or before the last processed time is rejected and
        counted. A second measurement at an occupied timestamp is an error.
        """
        if self._last_processed_ns is not None and t_ns <= self._last_processed_ns:
            self.diagnostics["reject_stale"] += 1
            return False
        if t_ns in self._measurements:
            raise MeasurementTimelineError(f"duplicate measurement at {t_ns} ns")
        bisect.insort(self._times, t_ns)
        self._measurements[t_ns] = meas
        return True

    def remove_processed_first(self) -> None:
        """Consume the earliest measurement."""
        if not self._times:
            raise MeasurementTimelineError("no measurement to remove")
        self.remove_processed_until(self._times[0])

    def remove_processed_measurement(self, t_ns: int) -> None:
        """Consume the measurement at ``t_ns`` and everything before it."""
        if t_ns not in self._measurements:
            raise MeasurementTimelineError(f"no measurement at {t_ns} ns")
        self.remove_processed_until(t_ns)

    def remove_processed_until(self, t_ns: int) -> None:
        """Discard measurements up to ``t_ns`` and advance the processed time."""
        if self._last_processed_ns is not None and t_ns < self._last_processed_ns:
            raise MeasurementTimelineError(
                f"processed time cannot move back from {self._last_processed_ns} "
                f"to {t_ns} ns"
            )
        count: int = bisect.bisect_right(self._times, t_ns)
        for stamp in self._times[:count]:
            del self._measurements[stamp]
        del self._times[:count]
        self.diagnostics["removed"] += count
        self._last_processed_ns = t_ns

    def clear(self) -> None:
        """Drop all measurements and forget the processed time."""
        self._times.clear()
        self._measurements.clear()
        self._last_processed_ns = None

    def get_last_time(self) -> Optional[int]:
        """Return the newest stored timestamp, if any."""
        if not self._times:
            return None
        return self._times[-1]

    def get_maximal_update_time(self, current_ns: int) -> int:
        """Return the latest time up to which this stream is complete.

        Without further information the stream is trusted up to
        ``current - max_wait``. A stored measurement lets the horizon move up
        to that measurement, but never past ``current - min_wait``. The result
        never falls below the last processed time.
        """
        horizon: int = current_ns - self._max_wait_ns
        if self._times:
            horizon = max(horizon, min(self._times[-1], current_ns - self._min_wait_ns))
        if self._last_processed_ns is not None:
            horizon = max(horizon, self._last_processed_ns)
        return horizon

    def add_all_in_range(self, times: set[int], start_ns: int, end_ns: int) -> None:
        """Add every stored timestamp in ``(start_ns, end_ns]`` to ``times``."""
        times.update(self.times_in_range(start_ns, end_ns))

    def add_last_in_range(self, times: set[int], start_ns: int, end_ns: int) -> None:
        """Add the newest stored timestamp in ``(start_ns, end_ns]``."""
        in_range: list[int] = self.times_in_range(start_ns, end_ns)
        if in_range:
            times.add(in_range[-1])

    def split_measurements(
        self, t0_ns: int, t1_ns: int, t2_ns: int, residual: Residual
    ) -> None:
        """Split the measurement governing ``(t0, t2]`` at ``t1``.

        Requires ``t0 < t1 < t2``, a measurement at ``t2`` and no other
        measurement in ``(t0, t2)``. Afterwards the measurement at ``t1``
        governs ``(t0, t1]`` and the one at ``t2`` governs ``(t1, t2]``.
        """
        if not t0_ns < t1_ns < t2_ns:
            raise MeasurementTimelineError("split requires t0 < t1 < t2")
        if t2_ns not in self._measurements:
            raise MeasurementTimelineError(f"no measurement at {t2_ns} ns to split")
        if self.times_in_range(t0_ns, t2_ns - 1):
            raise MeasurementTimelineError(
                f"measurements inside ({t0_ns}, {t2_ns}) block the split"
            )
        if self._last_processed_ns is not None and t1_ns <= self._last_processed_ns:
            raise MeasurementTimelineError("cannot split at a processed time")

        meas: ElementVector = residual.split_measurement(
            self._measurements[t2_ns], t0_ns, t1_ns, t2_ns
        )
        bisect.insort(self._times, t1_ns)
        self._measurements[t1_ns] = meas
        self.diagnostics["split"] += 1
        _LOG.debug("Split measurement at %d ns into %d ns", t2_ns, t1_ns)

    def merge_measurements(
        self, t0_ns: int, t1_ns: int, t2_ns: int, residual: Residual
    ) -> None:
        """Merge the measurements at ``t1`` and ``t2`` into one at ``t2``.

        Requires ``t0 < t1 < t2``, measurements at ``t1`` and ``t2`` and no
        other measurement in ``(t0, t2)``. The merged measurement governs
        ``(t0, t2]``.
        """
        if not t0_ns < t1_ns < t2_ns:
            raise MeasurementTimelineError("merge requires t0 < t1 < t2")
        if t1_ns not in self._measurements or t2_ns not in self._measurements:
            raise MeasurementTimelineError(
                f"merge requires measurements at {t1_ns} and {t2_ns} ns"
            )
        if self.times_in_range(t0_ns, t2_ns - 1) != [t1_ns]:
            raise MeasurementTimelineError(
                f"measurements inside ({t0_ns}, {t2_ns}) block the merge"
            )

        merged: ElementVector = residual.merge_measurements(
            self._measurements[t1_ns],
            self._measurements[t2_ns],
            t0_ns,
            t1_ns,
            t2_ns,
        )
        self._times.remove(t1_ns)
        del self._measurements[t1_ns]
        self._measurements[t2_ns] = merged
        self.diagnostics["merged"] += 1
        _LOG.debug("Merged measurement at %d ns into %d ns", t1_ns, t2_ns)
