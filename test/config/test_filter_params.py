################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the filter parameter schema."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from oasis_estimation.config.filter_params import FilterParams
from oasis_estimation.config.filter_params import FilterParamsError
from oasis_estimation.config.filter_params import TimelineParams
from oasis_estimation.config.filter_params import UpdateParams
from oasis_estimation.config.filter_params import load_filter_params


def test_defaults_validate() -> None:
    """Defaults should validate successfully."""
    params: FilterParams = FilterParams.defaults()
    params.validate()
    assert params.timeline.max_wait_ns == 100_000_000
    assert params.timeline.min_wait_ns == 0


def test_replace_returns_copy() -> None:
    """replace leaves the original untouched."""
    params: FilterParams = FilterParams.defaults()
    changed: FilterParams = params.replace(
        timeline=TimelineParams(max_wait_sec=0.5, min_wait_sec=0.1)
    )
    assert changed.timeline.max_wait_sec == 0.5
    assert params.timeline.max_wait_sec == 0.1


@pytest.mark.parametrize(
    "params",
    [
        FilterParams.defaults().replace(
            timeline=TimelineParams(max_wait_sec=0.1, min_wait_sec=0.2)
        ),
        FilterParams.defaults().replace(
            timeline=TimelineParams(max_wait_sec=0.1, min_wait_sec=-0.1)
        ),
        FilterParams.defaults().replace(update=UpdateParams(initial_variance=0.0)),
        FilterParams.defaults().replace(update=UpdateParams(implicit_iterations=0)),
        FilterParams.defaults().replace(update=UpdateParams(random_walk_variance=-1.0)),
    ],
)
def test_invalid_params(params: FilterParams) -> None:
    """Out-of-range values fail validation."""
    with pytest.raises(FilterParamsError):
        params.validate()


def test_from_dict_partial() -> None:
    """Missing keys default and unknown keys raise."""
    data: dict[str, Any] = {"timeline": {"max_wait_sec": 0.25}}
    params: FilterParams = FilterParams.from_dict(data)
    assert params.timeline.max_wait_sec == 0.25
    assert params.update == UpdateParams()
    with pytest.raises(FilterParamsError):
        FilterParams.from_dict({"timeline": {"max_wait": 0.25}})
    with pytest.raises(FilterParamsError):
        FilterParams.from_dict({"solver": {}})


def test_as_nested_dict_roundtrip() -> None:
    """The nested dict rebuilds equal parameters."""
    params: FilterParams = FilterParams.defaults()
    nested: dict[str, Any] = params.as_nested_dict()
    assert nested["update"]["implicit_iterations"] == 3
    assert FilterParams.from_dict(nested) == params


def test_load_yaml(tmp_path: Path) -> None:
    """Parameters load from YAML files."""
    path: Path = tmp_path / "filter.yaml"
    path.write_text(
        "timeline:\n"
        "  max_wait_sec: 0.2\n"
        "  min_wait_sec: 0.05\n"
        "update:\n"
        "  random_walk_variance: 0.01\n",
        encoding="utf-8",
    )
    params: FilterParams = load_filter_params(str(path))
    assert params.timeline.min_wait_ns == 50_000_000
    assert params.update.random_walk_variance == 0.01

    empty: Path = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_filter_params(str(empty)) == FilterParams.defaults()

    invalid: Path = tmp_path / "invalid.yaml"
    invalid.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(FilterParamsError):
        load_filter_params(str(invalid))
