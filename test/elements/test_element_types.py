################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for element types and the type registry."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import ArrayElement
from oasis_estimation.elements.element_types import ElementDimensionError
from oasis_estimation.elements.element_types import ElementType
from oasis_estimation.elements.element_types import ElementTypeMismatchError
from oasis_estimation.elements.element_types import ElementTypeSpecError
from oasis_estimation.elements.element_types import QuaternionElement
from oasis_estimation.elements.element_types import ScalarElement
from oasis_estimation.elements.element_types import VectorElement
from oasis_estimation.elements.element_types import register_element_type
from oasis_estimation.elements.element_types import resolve_element_type
from oasis_estimation.math_utils.quat import Quaternion


def test_resolve_builtin_tags() -> None:
    """Registry tags and parametric tags resolve to element types."""
    assert isinstance(resolve_element_type("scalar"), ScalarElement)
    assert isinstance(resolve_element_type("quat"), QuaternionElement)
    vec: ElementType = resolve_element_type("vec4")
    assert isinstance(vec, VectorElement)
    assert vec.dim == 4
    array: ElementType = resolve_element_type("quat[2]")
    assert isinstance(array, ArrayElement)
    assert array.dim == 6
    assert array.tag == "quat[2]"
    assert resolve_element_type("vec3[4]").dim == 12


def test_resolve_rejects_unknown_tags() -> None:
    """Unknown tags are rejected."""
    with pytest.raises(ElementTypeSpecError):
        resolve_element_type("matrix")
    with pytest.raises(ElementTypeSpecError):
        resolve_element_type("vec0")
    with pytest.raises(ElementTypeSpecError):
        resolve_element_type(3)  # type: ignore[arg-type]


def test_register_conflicting_tag() -> None:
    """Re-registering an equal type is allowed, a different one is not."""
    register_element_type(ScalarElement())

    class FakeScalar(ScalarElement):
        """Scalar with a distinct class but the same tag."""

    with pytest.raises(ElementTypeSpecError):
        register_element_type(FakeScalar())


def test_equality_by_tag() -> None:
    """Element types compare by class and tag."""
    assert VectorElement(3) == resolve_element_type("vec3")
    assert VectorElement(3) != VectorElement(2)
    assert hash(VectorElement(3)) == hash(VectorElement(3))


def test_validate_rejects_wrong_values() -> None:
    """Values of the wrong kind or shape are rejected."""
    with pytest.raises(ElementTypeMismatchError):
        VectorElement(3).validate([1.0, 2.0])
    with pytest.raises(ElementTypeMismatchError):
        VectorElement(4).validate(Quaternion.identity())
    with pytest.raises(ElementTypeMismatchError):
        ScalarElement().validate(True)
    with pytest.raises(ElementTypeMismatchError):
        QuaternionElement().validate("identity")
    with pytest.raises(ElementTypeMismatchError):
        ArrayElement(ScalarElement(), 2).validate([1.0])


def test_delta_dimension_checked() -> None:
    """Tangent deltas must match the element dimension."""
    with pytest.raises(ElementDimensionError):
        VectorElement(3).box_plus(np.zeros(3), np.zeros(2))


def test_quaternion_chart_roundtrip() -> None:
    """(q [+] d) [-] q recovers d."""
    element: QuaternionElement = QuaternionElement()
    q: Quaternion = Quaternion.from_rotvec(np.array([0.3, -0.5, 0.2]))
    d: NDArray[np.float64] = np.array([0.1, 0.05, -0.2])
    assert np.allclose(element.box_minus(element.box_plus(q, d), q), d)


def test_quaternion_uses_right_perturbation() -> None:
    """q [+] d composes the increment on the right."""
    element: QuaternionElement = QuaternionElement()
    q: Quaternion = Quaternion.from_rotvec(np.array([0.0, 0.0, 0.5]))
    d: NDArray[np.float64] = np.array([0.2, 0.0, 0.0])
    expected: Quaternion = q * Quaternion.from_rotvec(d)
    assert element.box_plus(q, d).almost_equal(expected)


def test_array_chart_roundtrip() -> None:
    """Arrays apply the chart entry by entry."""
    element: ElementType = resolve_element_type("quat[2]")
    value: list[Quaternion] = element.identity()
    d: NDArray[np.float64] = np.array([0.1, 0.0, 0.0, 0.0, -0.2, 0.3])
    moved: list[Quaternion] = element.box_plus(value, d)
    assert len(moved) == 2
    assert np.allclose(element.box_minus(moved, value), d)
    J_x, J_d = element.box_plus_jacobians(value, d)
    assert J_x.shape == (6, 6)
    assert J_d.shape == (6, 6)
