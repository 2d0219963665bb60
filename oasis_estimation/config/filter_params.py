################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Structured configuration schema for the estimation filter."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from typing import Any
from typing import Mapping

import yaml

from oasis_estimation.timing.time_base import sec_to_ns


# Longest wait for a sparse stream before forcing progress, in seconds
TIMELINE_MAX_WAIT_SEC: float = 0.1
# Settling delay before trusting a stream is complete, in seconds
TIMELINE_MIN_WAIT_SEC: float = 0.0

# Variance per second of elements no model propagates
UPDATE_RANDOM_WALK_VARIANCE: float = 1e-4
# Initial variance of every state tangent coordinate
UPDATE_INITIAL_VARIANCE: float = 1.0
# Gauss-Newton iterations when solving a binary residual for the new state
UPDATE_IMPLICIT_ITERATIONS: int = 3
# Relative diagonal jitter added to the innovation covariance
UPDATE_CHOLESKY_JITTER: float = 1e-12

# Perturbation for finite-difference Jacobians
VERIFY_FD_EPSILON: float = 1e-6
# Accepted deviation between analytic and numeric Jacobians
VERIFY_JACOBIAN_TOLERANCE: float = 1e-5


class FilterParamsError(Exception):
    """Raised when filter parameter validation fails."""


def _require_positive(value: float, name: str) -> None:
    """Require a positive value."""
    if value <= 0.0:
        raise FilterParamsError(f"{name} must be positive")


def _require_non_negative(value: float, name: str) -> None:
    """Require a non-negative value."""
    if value < 0.0:
        raise FilterParamsError(f"{name} must be non-negative")


@dataclass(frozen=True)
class TimelineParams:
    """Wait-time policy of one measurement timeline."""

    # Longest wait for a sparse stream in seconds
    max_wait_sec: float = TIMELINE_MAX_WAIT_SEC
    # Settling delay in seconds
    min_wait_sec: float = TIMELINE_MIN_WAIT_SEC

    @property
    def max_wait_ns(self) -> int:
        return sec_to_ns(self.max_wait_sec)

    @property
    def min_wait_ns(self) -> int:
        return sec_to_ns(self.min_wait_sec)

    def validate(self) -> None:
        _require_non_negative(self.min_wait_sec, "timeline.min_wait_sec")
        _require_non_negative(self.max_wait_sec, "timeline.max_wait_sec")
        if self.max_wait_sec < self.min_wait_sec:
            raise FilterParamsError(
                "timeline.max_wait_sec must not be below timeline.min_wait_sec"
            )


@dataclass(frozen=True)
class UpdateParams:
    """Numerical settings of the predict and update steps."""

    # Variance per second of unpropagated elements
    random_walk_variance: float = UPDATE_RANDOM_WALK_VARIANCE
    # Initial variance of every state tangent coordinate
    initial_variance: float = UPDATE_INITIAL_VARIANCE
    # Gauss-Newton iterations for implicit predictions
    implicit_iterations: int = UPDATE_IMPLICIT_ITERATIONS
    # Relative innovation covariance jitter
    cholesky_jitter: float = UPDATE_CHOLESKY_JITTER


@dataclass(frozen=True)
class VerificationParams:
    """Finite-difference Jacobian verification settings."""

    # Finite-difference step
    fd_epsilon: float = VERIFY_FD_EPSILON
    # Maximum absolute Jacobian deviation
    jacobian_tolerance: float = VERIFY_JACOBIAN_TOLERANCE


@dataclass(frozen=True)
class FilterParams:
    """Complete configuration tree of the filter."""

    timeline: TimelineParams
    update: UpdateParams
    verification: VerificationParams

    @classmethod
    def defaults(cls) -> FilterParams:
        """Return the default parameter tree."""
        return cls(
            timeline=TimelineParams(),
            update=UpdateParams(),
            verification=VerificationParams(),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilterParams:
        """Build parameters from a nested mapping, defaulting missing keys.

        Unknown namespaces or keys raise FilterParamsError.
        """
        sections: dict[str, type] = {
            "timeline": TimelineParams,
            "update": UpdateParams,
            "verification": VerificationParams,
        }
        unknown: set[str] = set(data) - set(sections)
        if unknown:
            raise FilterParamsError(f"unknown parameter namespaces: {sorted(unknown)}")
        values: dict[str, Any] = {}
        for namespace, section_type in sections.items():
            section: Any = data.get(namespace) or {}
            if not isinstance(section, Mapping):
                raise FilterParamsError(f"{namespace} must be a mapping")
            names: set[str] = {field.name for field in fields(section_type)}
            extra: set[str] = set(section) - names
            if extra:
                raise FilterParamsError(f"unknown keys in {namespace}: {sorted(extra)}")
            values[namespace] = section_type(**section)
        params: FilterParams = cls(**values)
        params.validate()
        return params

    def validate(self) -> None:
        """Validate parameter invariants and constraints."""
        self.timeline.validate()

        _require_non_negative(
            self.update.random_walk_variance, "update.random_walk_variance"
        )
        _require_positive(self.update.initial_variance, "update.initial_variance")
        if (
            not isinstance(self.update.implicit_iterations, int)
            or self.update.implicit_iterations < 1
        ):
            raise FilterParamsError("update.implicit_iterations must be an int >= 1")
        _require_non_negative(self.update.cholesky_jitter, "update.cholesky_jitter")

        _require_positive(self.verification.fd_epsilon, "verification.fd_epsilon")
        _require_positive(
            self.verification.jacobian_tolerance, "verification.jacobian_tolerance"
        )

    def replace(self, **namespace_overrides: Any) -> FilterParams:
        """Return a modified copy of the parameters."""
        return replace(self, **namespace_overrides)

    def as_nested_dict(self) -> dict[str, Any]:
        """Return a nested dict representation for debugging."""
        return _dataclass_to_dict(self)


def load_filter_params(path: str) -> FilterParams:
    """Load and validate filter parameters from a YAML file."""
    with open(path, "r", encoding="utf-8") as handle:
        data: Any = yaml.safe_load(handle)
    if data is None:
        return FilterParams.defaults()
    if not isinstance(data, Mapping):
        raise FilterParamsError("filter parameter file must contain a mapping")
    return FilterParams.from_dict(data)


def _dataclass_to_dict(value: Any) -> Any:
    """Convert dataclasses into plain Python values."""
    if hasattr(value, "__dataclass_fields__"):
        return {
            field.name: _dataclass_to_dict(getattr(value, field.name))
            for field in fields(value)
        }
    return value
