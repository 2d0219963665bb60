################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################
"""Unit quaternions in the wxyz convention."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .linalg import SO3
from .units import PhysicalConstants
from .units import assert_finite


@dataclass(frozen=True)
class Quaternion:
    """Rotation quaternion stored in wxyz order.

    Quaternions are immutable values. Composition uses the Hamilton product,
    so that ``(q1 * q2).rotate(v) == q1.rotate(q2.rotate(v))``.
    """

    wxyz: NDArray[np.float64]

    def __post_init__(self) -> None:
        """Validate and normalize the quaternion components."""
        wxyz: NDArray[np.float64] = np.array(self.wxyz, dtype=float)
        if wxyz.shape != (4,):
            raise ValueError("wxyz must be shape (4,)")
        assert_finite(wxyz, "wxyz")
        norm: float = float(np.linalg.norm(wxyz))
        if norm < PhysicalConstants.EPS:
            raise ValueError("Quaternion norm is too small")
        object.__setattr__(self, "wxyz", wxyz / norm)

    @staticmethod
    def identity() -> Quaternion:
        """Return the identity rotation."""
        return Quaternion(np.array([1.0, 0.0, 0.0, 0.0]))

    @staticmethod
    def from_wxyz(w: float, x: float, y: float, z: float) -> Quaternion:
        """Create a quaternion from components."""
        return Quaternion(np.array([w, x, y, z], dtype=float))

    @staticmethod
    def from_rotvec(w: NDArray[np.float64]) -> Quaternion:
        """Return Exp(w) for a rotation vector w in radians."""
        vec: NDArray[np.float64] = np.asarray(w, dtype=float)
        if vec.shape != (3,):
            raise ValueError("w must be shape (3,)")
        assert_finite(vec, "w")
        theta: float = float(np.linalg.norm(vec))
        half: float = 0.5 * theta
        if theta < PhysicalConstants.SMALL_ANGLE_RAD:
            # sin(theta/2)/theta to second order
            scale: float = 0.5 - theta * theta / 48.0
        else:
            scale = float(np.sin(half)) / theta
        return Quaternion(np.concatenate(([np.cos(half)], scale * vec)))

    @staticmethod
    def from_matrix(R: NDArray[np.float64]) -> Quaternion:
        """Create a quaternion from a rotation matrix."""
        return Quaternion.from_rotvec(SO3.log(R))

    def to_rotvec(self) -> NDArray[np.float64]:
        """Return Log(q) as a rotation vector with angle in [0, pi]."""
        q: NDArray[np.float64] = self.wxyz if self.wxyz[0] >= 0.0 else -self.wxyz
        xyz: NDArray[np.float64] = q[1:]
        sin_half: float = float(np.linalg.norm(xyz))
        if sin_half < PhysicalConstants.SMALL_ANGLE_RAD:
            return 2.0 * xyz / float(q[0])
        theta: float = 2.0 * float(np.arctan2(sin_half, float(q[0])))
        return theta / sin_half * xyz

    def as_matrix(self) -> NDArray[np.float64]:
        """Return the rotation matrix representation."""
        w, x, y, z = (float(c) for c in self.wxyz)
        xx: float = x * x
        yy: float = y * y
        zz: float = z * z
        return np.array(
            [
                [1.0 - 2.0 * (yy + zz), 2.0 * (x * y - z * w), 2.0 * (x * z + y * w)],
                [2.0 * (x * y + z * w), 1.0 - 2.0 * (xx + zz), 2.0 * (y * z - x * w)],
                [2.0 * (x * z - y * w), 2.0 * (y * z + x * w), 1.0 - 2.0 * (xx + yy)],
            ],
            dtype=float,
        )

    def inverse(self) -> Quaternion:
        """Return the inverse rotation."""
        return Quaternion(self.wxyz * np.array([1.0, -1.0, -1.0, -1.0]))

    def __mul__(self, other: Quaternion) -> Quaternion:
        """Compose two rotations with the Hamilton product."""
        w1, x1, y1, z1 = (float(c) for c in self.wxyz)
        w2, x2, y2, z2 = (float(c) for c in other.wxyz)
        return Quaternion.from_wxyz(
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        )

    def rotate(self, v: NDArray[np.float64]) -> NDArray[np.float64]:
        """Rotate a 3-vector by this quaternion."""
        vec: NDArray[np.float64] = np.asarray(v, dtype=float)
        if vec.shape != (3,):
            raise ValueError("v must be shape (3,)")
        return self.as_matrix() @ vec

    def to_wxyz(self) -> NDArray[np.float64]:
        """Return a copy of the quaternion components."""
        return np.array(self.wxyz, dtype=float)

    def almost_equal(self, other: Quaternion, atol: float = 1e-9) -> bool:
        """Check approximate equality, accounting for sign ambiguity."""
        if np.allclose(self.wxyz, other.wxyz, atol=atol):
            return True
        return bool(np.allclose(self.wxyz, -other.wxyz, atol=atol))
