################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Finite-difference verification of analytic Jacobians.

These checks are a development-time gate for new transformations and
residual models. The filter never calls them while running.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.model.transformation import FD_EPSILON
from oasis_estimation.model.transformation import Transformation


# Maximum absolute deviation accepted between analytic and numeric Jacobians
JACOBIAN_TOLERANCE: float = 1e-5


class JacobianMismatchError(Exception):
    """Raised when an analytic Jacobian deviates from finite differences."""

    def __init__(
        self, name: str, group: str, max_error: float, tolerance: float
    ) -> None:
        super().__init__(
            f"{name}: Jacobian w.r.t. {group!r} deviates by {max_error:.3e} "
            f"(tolerance {tolerance:.1e})"
        )
        self.name: str = name
        self.group: str = group
        self.max_error: float = max_error
        self.tolerance: float = tolerance


@dataclass(frozen=True)
class JacobianCheck:
    """Analytic and numeric Jacobian of one input group.

    Attributes:
        group: Input group name
        analytic: Jacobian supplied by the model
        numeric: Central-difference approximation
    """

    group: str
    analytic: NDArray[np.float64]
    numeric: NDArray[np.float64]

    @property
    def max_error(self) -> float:
        if self.analytic.size == 0:
            return 0.0
        return float(np.max(np.abs(self.analytic - self.numeric)))


def compare_jacobians(
    transformation: Transformation,
    inputs: Mapping[str, ElementVector],
    meas: Optional[ElementVector] = None,
    dt: float = 0.0,
    eps: float = FD_EPSILON,
) -> list[JacobianCheck]:
    """Return the analytic and numeric Jacobians of every input group."""
    return [
        JacobianCheck(
            group=group,
            analytic=transformation.jacobian(group, inputs, meas, dt),
            numeric=transformation.jac_fd(group, inputs, meas, dt, eps),
        )
        for group in transformation.input_groups()
    ]


def check_jacobians(
    transformation: Transformation,
    inputs: Mapping[str, ElementVector],
    meas: Optional[ElementVector] = None,
    dt: float = 0.0,
    eps: float = FD_EPSILON,
    tolerance: float = JACOBIAN_TOLERANCE,
) -> list[JacobianCheck]:
    """Compare every group Jacobian and raise on the first mismatch."""
    checks: list[JacobianCheck] = compare_jacobians(
        transformation, inputs, meas, dt, eps
    )
    for check in checks:
        assert_jacobian_close(
            type(transformation).__name__,
            check.group,
            check.analytic,
            check.numeric,
            tolerance,
        )
    return checks


def assert_jacobian_close(
    name: str,
    group: str,
    analytic: NDArray[np.float64],
    numeric: NDArray[np.float64],
    tolerance: float = JACOBIAN_TOLERANCE,
) -> None:
    """Raise JacobianMismatchError when two Jacobians differ."""
    if analytic.shape != numeric.shape:
        raise JacobianMismatchError(name, group, float("inf"), tolerance)
    if analytic.size == 0:
        return
    max_error: float = float(np.max(np.abs(analytic - numeric)))
    if not max_error <= tolerance:
        raise JacobianMismatchError(name, group, max_error, tolerance)
