################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Covariances over the tangent space of composite states.

A covariance is indexed like the tangent vector of an element vector: each
element owns a contiguous block of rows and columns, in schema order. Priors
and noise models are validated here before the filter uses them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVectorDefinition


# Absolute asymmetry accepted before a matrix is rejected
SYMMETRY_TOL: float = 1e-9

# Smallest eigenvalue accepted, relative to the largest magnitude
PSD_RELATIVE_TOL: float = 1e-12


class CovarianceError(Exception):
    """Raised when a matrix cannot serve as a covariance."""


@dataclass(frozen=True)
class Covariance:
    """Symmetric covariance of a tangent vector.

    Attributes:
        matrix: (N, N) float array, N may be zero for empty groups
    """

    matrix: NDArray[np.float64]

    def __post_init__(self) -> None:
        matrix: NDArray[np.float64] = np.array(self.matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise CovarianceError(f"expected a square matrix, got {matrix.shape}")
        if not np.all(np.isfinite(matrix)):
            raise CovarianceError("covariance has non-finite entries")
        asymmetry: float = (
            float(np.max(np.abs(matrix - matrix.T))) if matrix.size else 0.0
        )
        if asymmetry > SYMMETRY_TOL:
            raise CovarianceError(f"covariance is asymmetric by {asymmetry:.3e}")
        # Store the exact symmetric part
        object.__setattr__(self, "matrix", 0.5 * (matrix + matrix.T))

    def dim(self) -> int:
        return int(self.matrix.shape[0])

    def as_array(self) -> NDArray[np.float64]:
        return self.matrix.copy()

    def is_psd(self, *, tol: float = PSD_RELATIVE_TOL) -> bool:
        if self.dim() == 0:
            return True
        eigvals: NDArray[np.float64] = np.linalg.eigvalsh(self.matrix)
        scale: float = max(1.0, float(np.max(np.abs(eigvals))))
        return bool(eigvals[0] >= -tol * scale)

    def assert_psd(self, *, tol: float = PSD_RELATIVE_TOL) -> None:
        """Raise CovarianceError unless the matrix is positive semi-definite."""
        if not self.is_psd(tol=tol):
            raise CovarianceError("covariance is not positive semi-definite")

    def scaled(self, factor: float) -> Covariance:
        if factor < 0.0:
            raise CovarianceError("scale factor must be non-negative")
        return Covariance(self.matrix * factor)

    def propagated(
        self, J: NDArray[np.float64], Q: Optional[NDArray[np.float64]] = None
    ) -> Covariance:
        """Return ``J P Jᵀ + Q`` for a linearized map with Jacobian ``J``."""
        jac: NDArray[np.float64] = np.asarray(J, dtype=np.float64)
        if jac.ndim != 2 or jac.shape[1] != self.dim():
            raise CovarianceError(
                f"Jacobian of shape {jac.shape} does not act on dimension "
                f"{self.dim()}"
            )
        out: NDArray[np.float64] = jac @ self.matrix @ jac.T
        if Q is not None:
            if Q.shape != out.shape:
                raise CovarianceError(f"process noise must have shape {out.shape}")
            out = out + Q
        return Covariance(0.5 * (out + out.T))

    @staticmethod
    def zeros(dim: int) -> Covariance:
        if dim < 0:
            raise CovarianceError("dim must be non-negative")
        return Covariance(np.zeros((dim, dim), dtype=np.float64))

    @staticmethod
    def eye(dim: int, variance: float = 1.0) -> Covariance:
        """Return ``variance * I``."""
        if dim < 0:
            raise CovarianceError("dim must be non-negative")
        if variance < 0.0:
            raise CovarianceError("variance must be non-negative")
        return Covariance(variance * np.eye(dim, dtype=np.float64))

    @staticmethod
    def for_definition(
        definition: ElementVectorDefinition,
        variances: Optional[Mapping[str, float]] = None,
        default: float = 1.0,
    ) -> Covariance:
        """Return a block-diagonal covariance with one variance per element.

        Elements missing from ``variances`` get ``default``. Unknown names
        raise CovarianceError.
        """
        given: Mapping[str, float] = variances if variances is not None else {}
        unknown: list[str] = sorted(set(given) - set(definition.names()))
        if unknown:
            raise CovarianceError(f"no elements named {unknown}")
        diagonal: NDArray[np.float64] = np.empty(definition.dim(), dtype=np.float64)
        for name in definition.names():
            variance: float = float(given.get(name, default))
            if variance < 0.0:
                raise CovarianceError(f"variance of {name!r} must be non-negative")
            diagonal[definition.tangent_slice(name)] = variance
        return Covariance(np.diag(diagonal))
