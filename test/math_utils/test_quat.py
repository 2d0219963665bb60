################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for quaternion utilities."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.typing import NDArray

from oasis_estimation.math_utils.linalg import SO3
from oasis_estimation.math_utils.quat import Quaternion


def test_identity_properties() -> None:
    """Checks identity quaternion properties."""
    q: Quaternion = Quaternion.identity()
    assert np.allclose(q.as_matrix(), np.eye(3))
    assert np.allclose(q.to_rotvec(), np.zeros(3))


def test_construction_normalizes() -> None:
    """Checks components are normalized on construction."""
    q: Quaternion = Quaternion.from_wxyz(2.0, 0.0, 0.0, 0.0)
    assert np.allclose(q.wxyz, [1.0, 0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        Quaternion(np.zeros(4))
    with pytest.raises(ValueError):
        Quaternion(np.array([1.0, 0.0, 0.0]))


def test_multiplication_inverse() -> None:
    """Checks quaternion multiplication with inverse returns identity."""
    q: Quaternion = Quaternion.from_rotvec(np.array([0.2, 0.0, -0.1], dtype=float))
    assert (q * q.inverse()).almost_equal(Quaternion.identity())


def test_composition_matches_matrices() -> None:
    """Checks the Hamilton product composes rotations like matrices."""
    q1: Quaternion = Quaternion.from_rotvec(np.array([0.3, -0.1, 0.2], dtype=float))
    q2: Quaternion = Quaternion.from_rotvec(np.array([-0.2, 0.5, 0.1], dtype=float))
    assert np.allclose((q1 * q2).as_matrix(), q1.as_matrix() @ q2.as_matrix())


def test_rotvec_roundtrip() -> None:
    """Checks from_rotvec and to_rotvec are inverse."""
    w: NDArray[np.float64] = np.array([0.7, -1.1, 0.4], dtype=float)
    assert np.allclose(Quaternion.from_rotvec(w).to_rotvec(), w, atol=1e-12)
    tiny: NDArray[np.float64] = np.array([1e-11, 0.0, 3e-11], dtype=float)
    assert np.allclose(Quaternion.from_rotvec(tiny).to_rotvec(), tiny, atol=1e-20)


def test_from_matrix_roundtrip() -> None:
    """Checks conversion between matrix and quaternion."""
    R: NDArray[np.float64] = SO3.exp(np.array([0.1, 0.2, 0.3], dtype=float))
    assert np.allclose(Quaternion.from_matrix(R).as_matrix(), R, atol=1e-8)


def test_rotate_matches_matrix() -> None:
    """Checks vector rotation matches matrix multiply."""
    vec: NDArray[np.float64] = np.array([1.0, 2.0, 3.0], dtype=float)
    q: Quaternion = Quaternion.from_rotvec(np.array([0.1, 0.2, 0.1], dtype=float))
    assert np.allclose(q.rotate(vec), q.as_matrix() @ vec)


def test_almost_equal_sign_flip() -> None:
    """Checks almost_equal handles sign flips."""
    q: Quaternion = Quaternion.from_rotvec(np.array([0.1, -0.2, 0.1], dtype=float))
    assert q.almost_equal(Quaternion(-q.wxyz))
    assert np.allclose(Quaternion(-q.wxyz).to_rotvec(), q.to_rotvec())
