################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the transformation base class."""

from __future__ import annotations

from typing import Mapping
from typing import Optional

import numpy as np
import pytest
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.model.transformation import Transformation
from oasis_estimation.model.transformation import TransformationError
from oasis_estimation.model.verification import JacobianMismatchError
from oasis_estimation.model.verification import check_jacobians
from oasis_estimation.model.verification import compare_jacobians


OFFSET: NDArray[np.float64] = np.array([1.0, 2.0, 3.0])


class ScaledPointTransformation(Transformation):
    """Maps a time and four points to pos = (t + 1) * (points[2] + offset)."""

    def __init__(self) -> None:
        super().__init__(
            ElementVectorDefinition([("pos", "vec3")]),
            {
                "tim": ElementVectorDefinition([("t", "scalar")]),
                "sta": ElementVectorDefinition([("points", "vec3[4]")]),
            },
        )

    def eval_transform(
        self,
        out: ElementVector,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        t: float = inputs["tim"].get("t")
        points: list[NDArray[np.float64]] = inputs["sta"].get("points")
        out.set("pos", (t + 1.0) * (points[2] + OFFSET))

    def jac_transform(
        self,
        J: NDArray[np.float64],
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        t: float = inputs["tim"].get("t")
        points: list[NDArray[np.float64]] = inputs["sta"].get("points")
        if group == "tim":
            self.set_jac_block(J, "tim", "pos", "t", (points[2] + OFFSET)[:, None])
        else:
            block: NDArray[np.float64] = np.zeros((3, 12), dtype=float)
            block[:, 6:9] = (t + 1.0) * np.eye(3)
            self.set_jac_block(J, "sta", "pos", "points", block)


class BrokenTransformation(ScaledPointTransformation):
    """Reports a wrong time Jacobian."""

    def jac_transform(
        self,
        J: NDArray[np.float64],
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        super().jac_transform(J, group, inputs, meas, dt)
        if group == "tim":
            J *= 2.0


def _inputs(transformation: Transformation) -> dict[str, ElementVector]:
    rng: np.random.Generator = np.random.default_rng(7)
    return {
        "tim": ElementVector(transformation.input_definition("tim"), {"t": 0.5}),
        "sta": ElementVector(
            transformation.input_definition("sta"),
            {"points": [rng.normal(size=3) for _ in range(4)]},
        ),
    }


def test_evaluate() -> None:
    """Evaluation writes the output vector."""
    transformation: ScaledPointTransformation = ScaledPointTransformation()
    inputs: dict[str, ElementVector] = _inputs(transformation)
    out: ElementVector = transformation.evaluate(inputs)
    expected: NDArray[np.float64] = 1.5 * (inputs["sta"].get("points")[2] + OFFSET)
    assert np.allclose(out.get("pos"), expected)
    assert transformation.input_groups() == ("tim", "sta")


def test_jacobians_match_finite_differences() -> None:
    """Analytic Jacobians agree with central differences."""
    transformation: ScaledPointTransformation = ScaledPointTransformation()
    checks = check_jacobians(transformation, _inputs(transformation))
    assert [check.group for check in checks] == ["tim", "sta"]
    assert checks[0].analytic.shape == (3, 1)
    assert checks[1].analytic.shape == (3, 12)
    assert all(check.max_error < 1e-6 for check in checks)


def test_wrong_jacobian_is_reported() -> None:
    """A wrong Jacobian raises with the offending group."""
    transformation: BrokenTransformation = BrokenTransformation()
    inputs: dict[str, ElementVector] = _inputs(transformation)
    assert compare_jacobians(transformation, inputs)[0].max_error > 1e-3
    with pytest.raises(JacobianMismatchError) as excinfo:
        check_jacobians(transformation, inputs)
    assert excinfo.value.group == "tim"


def test_transform_covariance() -> None:
    """Covariances propagate through the stacked Jacobian."""
    transformation: ScaledPointTransformation = ScaledPointTransformation()
    inputs: dict[str, ElementVector] = _inputs(transformation)
    cov: NDArray[np.float64] = np.eye(13)
    result: NDArray[np.float64] = transformation.transform_cov_mat(cov, inputs)
    column: NDArray[np.float64] = inputs["sta"].get("points")[2] + OFFSET
    expected: NDArray[np.float64] = np.outer(column, column) + 2.25 * np.eye(3)
    assert np.allclose(result, expected)
    with pytest.raises(TransformationError):
        transformation.transform_cov_mat(np.eye(12), inputs)


def test_input_validation() -> None:
    """Missing groups, foreign definitions and bad blocks raise."""
    transformation: ScaledPointTransformation = ScaledPointTransformation()
    inputs: dict[str, ElementVector] = _inputs(transformation)
    with pytest.raises(TransformationError):
        transformation.evaluate({"tim": inputs["tim"]})
    with pytest.raises(TransformationError):
        transformation.evaluate({"tim": inputs["sta"], "sta": inputs["sta"]})
    with pytest.raises(TransformationError):
        transformation.input_definition("noi")
    J: NDArray[np.float64] = np.zeros((3, 1), dtype=float)
    with pytest.raises(TransformationError):
        transformation.set_jac_block(J, "tim", "pos", "t", np.eye(3))
