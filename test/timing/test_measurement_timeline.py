################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the per-residual measurement timeline."""

from __future__ import annotations

import numpy as np
import pytest

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.residuals.accelerometer_residual import AccelerometerResidual
from oasis_estimation.timing.measurement_timeline import MeasurementTimeline
from oasis_estimation.timing.measurement_timeline import MeasurementTimelineError


MS: int = 1_000_000


def _acc(residual: AccelerometerResidual, z: float) -> ElementVector:
    return residual.make_measurement(acc=[0.0, 0.0, z])


def _vel(residual: AccelerometerResidual, z: float) -> ElementVector:
    return ElementVector(residual.cur_definition, {"vel": [0.0, 0.0, z]})


def test_ordering_and_queries() -> None:
    """Measurements iterate in time order regardless of arrival order."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    for t_ms in (30, 10, 20):
        assert timeline.add_measurement(_acc(residual, t_ms), t_ms * MS)
    assert timeline.times() == [10 * MS, 20 * MS, 30 * MS]
    assert len(timeline) == 3
    assert 20 * MS in timeline
    assert timeline.next_time(10 * MS) == 20 * MS
    assert timeline.next_time(30 * MS) is None
    assert timeline.times_in_range(10 * MS, 30 * MS) == [20 * MS, 30 * MS]
    assert timeline.get_last_time() == 30 * MS
    assert timeline.measurement_at(15 * MS) is None


def test_duplicate_timestamp_raises() -> None:
    """Two measurements at one timestamp are an error."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.add_measurement(_acc(residual, 1.0), 5)
    with pytest.raises(MeasurementTimelineError):
        timeline.add_measurement(_acc(residual, 2.0), 5)


def test_stale_measurements_rejected() -> None:
    """Measurements at or before the processed time are rejected and counted."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.add_measurement(_acc(residual, 1.0), 10)
    timeline.add_measurement(_acc(residual, 2.0), 20)
    timeline.remove_processed_until(15)
    assert timeline.last_processed_time == 15
    assert timeline.times() == [20]
    assert not timeline.add_measurement(_acc(residual, 3.0), 15)
    assert not timeline.add_measurement(_acc(residual, 3.0), 12)
    assert timeline.diagnostics["reject_stale"] == 2
    assert timeline.add_measurement(_acc(residual, 3.0), 16)
    with pytest.raises(MeasurementTimelineError):
        timeline.remove_processed_until(14)


def test_remove_processed_variants() -> None:
    """Removing the first or a specific measurement advances the processed time."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    for t in (1, 2, 3, 4):
        timeline.add_measurement(_acc(residual, float(t)), t)
    timeline.remove_processed_first()
    assert timeline.last_processed_time == 1
    timeline.remove_processed_measurement(3)
    assert timeline.times() == [4]
    with pytest.raises(MeasurementTimelineError):
        timeline.remove_processed_measurement(10)
    timeline.clear()
    assert timeline.last_processed_time is None
    assert len(timeline) == 0


def test_maximal_update_time() -> None:
    """The horizon trusts stored measurements up to now minus the min wait."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline(
        max_wait_ns=100 * MS, min_wait_ns=10 * MS
    )
    assert timeline.get_maximal_update_time(1000 * MS) == 900 * MS
    timeline.add_measurement(_acc(residual, 0.0), 950 * MS)
    assert timeline.get_maximal_update_time(1000 * MS) == 950 * MS
    assert timeline.get_maximal_update_time(955 * MS) == 945 * MS
    timeline.remove_processed_until(980 * MS)
    assert timeline.get_maximal_update_time(1000 * MS) == 980 * MS


def test_invalid_wait_policy() -> None:
    """The max wait must cover the min wait."""
    with pytest.raises(MeasurementTimelineError):
        MeasurementTimeline(max_wait_ns=1, min_wait_ns=2)
    with pytest.raises(MeasurementTimelineError):
        MeasurementTimeline(max_wait_ns=1, min_wait_ns=-1)


def test_range_collection() -> None:
    """All or only the newest timestamps in a half-open range are collected."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    for t in (10, 20, 30, 40):
        timeline.add_measurement(_acc(residual, 0.0), t)
    every: set[int] = set()
    timeline.add_all_in_range(every, 10, 30)
    assert every == {20, 30}
    newest: set[int] = set()
    timeline.add_last_in_range(newest, 10, 30)
    assert newest == {30}
    timeline.add_last_in_range(newest, 40, 50)
    assert newest == {30}


def test_split_then_merge_restores_measurement() -> None:
    """Splitting and merging back recovers the original constant measurement."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.remove_processed_until(0)
    timeline.add_measurement(_acc(residual, 2.0), 100)

    timeline.split_measurements(0, 40, 100, residual)
    assert timeline.times() == [40, 100]
    first: ElementVector = timeline.measurement_at(40)  # type: ignore[assignment]
    assert np.allclose(first.get("acc"), [0.0, 0.0, 2.0])
    assert timeline.diagnostics["split"] == 1

    timeline.merge_measurements(0, 40, 100, residual)
    assert timeline.times() == [100]
    merged: ElementVector = timeline.measurement_at(100)  # type: ignore[assignment]
    assert np.allclose(merged.get("acc"), [0.0, 0.0, 2.0])
    assert timeline.diagnostics["merged"] == 1


def test_split_residuals_chain_to_unsplit_residual() -> None:
    """Chaining the split intervals reproduces the unsplit evaluation."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.remove_processed_until(0)
    timeline.add_measurement(_acc(residual, 2.0), 100 * MS)

    v0: ElementVector = _vel(residual, 0.0)
    v2: ElementVector = _vel(residual, 0.2)
    whole: ElementVector = residual.evaluate_residual(
        v0, v2, timeline.measurement_at(100 * MS), 0.1
    )
    assert np.allclose(whole.to_tangent(), np.zeros(3))

    timeline.split_measurements(0, 40 * MS, 100 * MS, residual)
    v1: ElementVector = _vel(residual, 0.08)
    first: ElementVector = residual.evaluate_residual(
        v0, v1, timeline.measurement_at(40 * MS), 0.04
    )
    second: ElementVector = residual.evaluate_residual(
        v1, v2, timeline.measurement_at(100 * MS), 0.06
    )
    assert np.allclose(first.to_tangent(), whole.to_tangent())
    assert np.allclose(second.to_tangent(), whole.to_tangent())


def test_merge_is_time_weighted() -> None:
    """Merged measurements weight each input by its interval length."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.add_measurement(_acc(residual, 1.0), 10)
    timeline.add_measurement(_acc(residual, 5.0), 40)
    timeline.merge_measurements(0, 10, 40, residual)
    merged: ElementVector = timeline.measurement_at(40)  # type: ignore[assignment]
    assert np.allclose(merged.get("acc"), [0.0, 0.0, 4.0])


def test_split_merge_preconditions() -> None:
    """Split and merge refuse to reorder or skip measurements."""
    residual: AccelerometerResidual = AccelerometerResidual()
    timeline: MeasurementTimeline = MeasurementTimeline()
    timeline.remove_processed_until(0)
    for t in (10, 20, 30):
        timeline.add_measurement(_acc(residual, 0.0), t)
    with pytest.raises(MeasurementTimelineError):
        timeline.split_measurements(0, 25, 30, residual)
    with pytest.raises(MeasurementTimelineError):
        timeline.split_measurements(0, 5, 15, residual)
    with pytest.raises(MeasurementTimelineError):
        timeline.split_measurements(-10, 0, 10, residual)
    with pytest.raises(MeasurementTimelineError):
        timeline.merge_measurements(0, 10, 30, residual)
    with pytest.raises(MeasurementTimelineError):
        timeline.merge_measurements(0, 20, 10, residual)
