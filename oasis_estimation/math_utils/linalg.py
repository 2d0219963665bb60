################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################
"""Linear algebra utilities for rotations and matrices."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .units import PhysicalConstants
from .units import assert_finite


class SO3:
    """SO(3) exponential map utilities on rotation vectors.

    The Jacobians follow the right-perturbation convention:

        Exp(phi + d) ~= Exp(phi) Exp(Jr(phi) d)
        Log(Exp(phi) Exp(d)) ~= phi + Jr(phi)^-1 d
    """

    @staticmethod
    def hat(w: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the skew-symmetric matrix [w]x."""
        vec: NDArray[np.float64] = _as_vec3(w, "w")
        return np.array(
            [
                [0.0, -vec[2], vec[1]],
                [vec[2], 0.0, -vec[0]],
                [-vec[1], vec[0], 0.0],
            ],
            dtype=float,
        )

    @staticmethod
    def vee(W: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the vector of a skew-symmetric matrix."""
        mat: NDArray[np.float64] = np.asarray(W, dtype=float)
        Linalg.ensure_shape(mat, (3, 3), "W")
        return np.array([mat[2, 1], mat[0, 2], mat[1, 0]], dtype=float)

    @staticmethod
    def exp(w: NDArray[np.float64]) -> NDArray[np.float64]:
        """Exponentiate a rotation vector to a rotation matrix."""
        vec: NDArray[np.float64] = _as_vec3(w, "w")
        theta: float = float(np.linalg.norm(vec))
        W: NDArray[np.float64] = SO3.hat(vec)
        W2: NDArray[np.float64] = W @ W
        if theta < PhysicalConstants.SMALL_ANGLE_RAD:
            return np.eye(3) + W + 0.5 * W2
        a: float = float(np.sin(theta)) / theta
        b: float = (1.0 - float(np.cos(theta))) / (theta * theta)
        return np.eye(3) + a * W + b * W2

    @staticmethod
    def log(R: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the rotation vector of a rotation matrix."""
        mat: NDArray[np.float64] = np.asarray(R, dtype=float)
        Linalg.ensure_shape(mat, (3, 3), "R")
        assert_finite(mat, "R")
        cos_theta: float = float(np.clip((np.trace(mat) - 1.0) * 0.5, -1.0, 1.0))
        theta: float = float(np.arccos(cos_theta))
        sin_theta: float = float(np.sin(theta))
        if theta < PhysicalConstants.SMALL_ANGLE_RAD or abs(sin_theta) < 1e-9:
            return 0.5 * SO3.vee(mat - mat.T)
        return theta / (2.0 * sin_theta) * SO3.vee(mat - mat.T)

    @staticmethod
    def right_jacobian(w: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the right Jacobian Jr(w) of the exponential map."""
        vec: NDArray[np.float64] = _as_vec3(w, "w")
        theta: float = float(np.linalg.norm(vec))
        W: NDArray[np.float64] = SO3.hat(vec)
        W2: NDArray[np.float64] = W @ W
        if theta < PhysicalConstants.SMALL_ANGLE_RAD:
            return np.eye(3) - 0.5 * W + W2 / 6.0
        theta2: float = theta * theta
        a: float = (1.0 - float(np.cos(theta))) / theta2
        b: float = (theta - float(np.sin(theta))) / (theta2 * theta)
        return np.eye(3) - a * W + b * W2

    @staticmethod
    def right_jacobian_inv(w: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the inverse right Jacobian Jr(w)^-1."""
        vec: NDArray[np.float64] = _as_vec3(w, "w")
        theta: float = float(np.linalg.norm(vec))
        W: NDArray[np.float64] = SO3.hat(vec)
        W2: NDArray[np.float64] = W @ W
        if theta < PhysicalConstants.SMALL_ANGLE_RAD:
            return np.eye(3) + 0.5 * W + W2 / 12.0
        half: float = 0.5 * theta
        # 1/theta^2 - (1 + cos)/(2 theta sin), written with the half angle
        c: float = 1.0 / (theta * theta) - 1.0 / (2.0 * theta * float(np.tan(half)))
        return np.eye(3) + 0.5 * W + c * W2


class Linalg:
    """General linear algebra helpers."""

    @staticmethod
    def block_diag(*blocks: NDArray[np.float64]) -> NDArray[np.float64]:
        """Create a block diagonal matrix, accepting empty blocks."""
        mats: list[NDArray[np.float64]] = [
            np.atleast_2d(np.asarray(block, dtype=float)) for block in blocks
        ]
        rows: int = sum(mat.shape[0] for mat in mats)
        cols: int = sum(mat.shape[1] for mat in mats)
        result: NDArray[np.float64] = np.zeros((rows, cols), dtype=float)
        row: int = 0
        col: int = 0
        for mat in mats:
            result[row : row + mat.shape[0], col : col + mat.shape[1]] = mat
            row += mat.shape[0]
            col += mat.shape[1]
        return result

    @staticmethod
    def ensure_shape(x: NDArray[np.float64], shape: tuple[int, ...], name: str) -> None:
        """Ensure an array has the expected shape."""
        if x.shape != shape:
            raise ValueError(f"{name} must have shape {shape}")

    @staticmethod
    def symmetrize(P: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the symmetric part of a square matrix."""
        mat: NDArray[np.float64] = np.asarray(P, dtype=float)
        return 0.5 * (mat + mat.T)


def _as_vec3(w: NDArray[np.float64], name: str) -> NDArray[np.float64]:
    vec: NDArray[np.float64] = np.asarray(w, dtype=float)
    Linalg.ensure_shape(vec, (3,), name)
    assert_finite(vec, name)
    return vec
