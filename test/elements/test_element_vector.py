################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for element vector definitions and element vectors."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import ElementTypeMismatchError
from oasis_estimation.elements.element_types import QuaternionElement
from oasis_estimation.elements.element_types import VectorElement
from oasis_estimation.elements.element_vector import DefinitionError
from oasis_estimation.elements.element_vector import ElementNotFoundError
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.math_utils.quat import Quaternion


POSE: ElementVectorDefinition = ElementVectorDefinition(
    [("pos", "vec3"), ("att", "quat"), ("scale", "scalar")]
)


def _numeric_jacobian(
    fn: Callable[[ElementVector], NDArray[np.float64]],
    x: ElementVector,
    eps: float = 1e-6,
) -> NDArray[np.float64]:
    """Return the central-difference Jacobian of a tangent-valued function."""
    columns: list[NDArray[np.float64]] = []
    for k in range(x.dim()):
        delta: NDArray[np.float64] = np.zeros(x.dim(), dtype=float)
        delta[k] = eps
        columns.append((fn(x.box_plus(delta)) - fn(x.box_plus(-delta))) / (2.0 * eps))
    return np.stack(columns, axis=1)


def _sample_pose() -> ElementVector:
    return ElementVector.from_values(
        POSE,
        pos=np.array([1.0, -2.0, 0.5]),
        att=Quaternion.from_rotvec(np.array([0.3, 0.1, -0.4])),
        scale=2.0,
    )


def test_layout() -> None:
    """Offsets follow declaration order."""
    assert POSE.dim() == 7
    assert POSE.names() == ("pos", "att", "scale")
    assert POSE.offset("att") == 3
    assert POSE.tangent_slice("scale") == slice(6, 7)
    assert POSE.index_of("scale") == 2
    assert "att" in POSE
    assert "vel" not in POSE
    assert len(POSE) == 3
    assert "att: quat [3:6]" in POSE.describe()


def test_definition_errors() -> None:
    """Duplicate and unknown names raise."""
    with pytest.raises(DefinitionError):
        ElementVectorDefinition([("pos", "vec3"), ("pos", "vec3")])
    with pytest.raises(DefinitionError):
        ElementVectorDefinition([("", "vec3")])
    with pytest.raises(ElementNotFoundError):
        POSE.offset("vel")


def test_merged_deduplicates_by_name() -> None:
    """Merging keeps the first order and appends new names."""
    other: ElementVectorDefinition = ElementVectorDefinition(
        [("vel", "vec3"), ("pos", VectorElement(3))]
    )
    merged: ElementVectorDefinition = POSE.merged(other)
    assert merged.names() == ("pos", "att", "scale", "vel")
    assert merged.dim() == 10
    assert POSE.dim() == 7


def test_merged_rejects_type_conflict() -> None:
    """A shared name with a different type raises."""
    other: ElementVectorDefinition = ElementVectorDefinition([("att", "vec3")])
    with pytest.raises(ElementTypeMismatchError):
        POSE.merged(other)


def test_definition_equality() -> None:
    """Definitions compare by names, order and types."""
    same: ElementVectorDefinition = ElementVectorDefinition(
        [("pos", "vec3"), ("att", QuaternionElement()), ("scale", "scalar")]
    )
    assert same == POSE
    assert hash(same) == hash(POSE)
    assert POSE.with_element("vel", "vec3") != POSE


def test_default_values_are_identity() -> None:
    """Unspecified elements start at identity."""
    vector: ElementVector = ElementVector(POSE)
    assert np.allclose(vector.get("pos"), np.zeros(3))
    assert vector.get("att").almost_equal(Quaternion.identity())
    assert vector.get("scale") == 0.0
    assert np.allclose(vector.to_tangent(), np.zeros(7))


def test_get_checks_expected_type() -> None:
    """get raises when the caller assumes the wrong type."""
    vector: ElementVector = _sample_pose()
    assert isinstance(vector.get("att", QuaternionElement), Quaternion)
    assert vector.get("pos", "vec3").shape == (3,)
    with pytest.raises(ElementTypeMismatchError):
        vector.get("pos", "quat")
    with pytest.raises(ElementTypeMismatchError):
        vector.get("att", VectorElement)
    with pytest.raises(ElementNotFoundError):
        vector.get("vel")


def test_set_validates() -> None:
    """set rejects values that do not fit the element."""
    vector: ElementVector = ElementVector(POSE)
    with pytest.raises(ElementTypeMismatchError):
        vector.set("pos", np.zeros(4))
    with pytest.raises(ElementNotFoundError):
        vector.set("vel", np.zeros(3))


def test_get_returns_live_reference() -> None:
    """In-place edits of a stored array are visible through the vector."""
    vector: ElementVector = ElementVector(POSE)
    stored: NDArray[np.float64] = np.zeros(3, dtype=np.float64)
    vector.set("pos", stored)
    stored[0] = 5.0
    vector.get("pos")[1] = 7.0
    assert np.allclose(vector.get("pos"), [5.0, 7.0, 0.0])
    assert vector.get("pos") is stored


def test_copy_is_deep() -> None:
    """Copies do not share element storage."""
    vector: ElementVector = _sample_pose()
    duplicate: ElementVector = vector.copy()
    duplicate.get("pos")[0] = 100.0
    assert vector.get("pos")[0] == 1.0


def test_chart_roundtrip() -> None:
    """(x [+] d) [-] x recovers d."""
    vector: ElementVector = _sample_pose()
    d: NDArray[np.float64] = np.array([0.1, 0.2, -0.3, 0.05, -0.1, 0.2, 0.5])
    moved: ElementVector = vector.box_plus(d)
    assert np.allclose(moved.box_minus(vector), d)
    assert np.allclose(vector.box_minus(vector), np.zeros(7))


def test_box_plus_into_output() -> None:
    """box_plus writes into a supplied output vector."""
    vector: ElementVector = _sample_pose()
    out: ElementVector = ElementVector(POSE)
    result: ElementVector = vector.box_plus(np.ones(7), out=out)
    assert result is out
    assert np.allclose(out.get("pos"), [2.0, -1.0, 1.5])
    with pytest.raises(DefinitionError):
        vector.box_plus(np.ones(6))


def test_box_minus_jacobians_match_numeric() -> None:
    """Analytic box-minus Jacobians match central differences."""
    x: ElementVector = _sample_pose()
    y: ElementVector = x.box_plus(np.array([0.3, 0.0, 0.1, 0.2, -0.3, 0.4, 1.0]))
    J_y, J_x = y.box_minus_jacobians(x)
    assert np.allclose(J_y, _numeric_jacobian(lambda v: v.box_minus(x), y), atol=1e-6)
    assert np.allclose(J_x, _numeric_jacobian(lambda v: y.box_minus(v), x), atol=1e-6)


def test_box_plus_jacobian_matches_numeric() -> None:
    """Analytic box-plus Jacobian w.r.t. the delta matches central differences."""
    x: ElementVector = _sample_pose()
    d: NDArray[np.float64] = np.array([0.2, -0.1, 0.3, 0.4, 0.1, -0.2, 0.0])
    base: ElementVector = x.box_plus(d)
    numeric: NDArray[np.float64] = np.zeros((7, 7), dtype=float)
    eps: float = 1e-6
    for k in range(7):
        step: NDArray[np.float64] = np.zeros(7, dtype=float)
        step[k] = eps
        numeric[:, k] = (
            x.box_plus(d + step).box_minus(base) - x.box_plus(d - step).box_minus(base)
        ) / (2.0 * eps)
    assert np.allclose(x.box_plus_jacobian(d), numeric, atol=1e-6)


def test_project_from_copies_shared_names() -> None:
    """project_from copies common elements and leaves the rest."""
    source: ElementVector = _sample_pose()
    target_definition: ElementVectorDefinition = ElementVectorDefinition(
        [("pos", "vec3"), ("vel", "vec3")]
    )
    target: ElementVector = ElementVector(target_definition)
    target.project_from(source)
    assert np.allclose(target.get("pos"), source.get("pos"))
    assert np.allclose(target.get("vel"), np.zeros(3))
    source.get("pos")[0] = -9.0
    assert target.get("pos")[0] == 1.0

    conflicting: ElementVector = ElementVector(
        ElementVectorDefinition([("att", "vec3")])
    )
    with pytest.raises(ElementTypeMismatchError):
        conflicting.project_from(source)
