################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.math_utils.linalg import Linalg


# Jitter factors tried when the innovation covariance is not positive definite
_CHOLESKY_RETRY_FACTORS: tuple[float, ...] = (1e-10, 1e-8, 1e-6, 1e-4)


@dataclass(frozen=True)
class UpdateReport:
    """Report for EKF update acceptance and innovation metrics.

    Data contract:
        accepted:
            True when the update was applied
        reason:
            Deterministic rejection reason string when accepted is False
        innovation_mahalanobis2:
            νᵀ S⁻¹ ν scalar, dimensionless and >= 0, None on rejection
    """

    accepted: bool
    reason: str
    innovation_mahalanobis2: Optional[float]


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of one measurement update.

    Attributes:
        report: Acceptance report
        correction: Tangent correction δx = K ν, None on rejection
        covariance: Posterior covariance, None on rejection
    """

    report: UpdateReport
    correction: Optional[NDArray[np.float64]]
    covariance: Optional[NDArray[np.float64]]


class UpdateStep:
    """Linearized Kalman measurement update.

    Equations:
        Innovation and gain:
            S = H P Hᵀ + R
            K = P Hᵀ S⁻¹
            δx = K ν

        Joseph-form covariance update:
            P <- (I - K H) P (I - K H)ᵀ + K R Kᵀ

    Numerical stability notes:
        - S is symmetrized and receives a small relative diagonal jitter
          before its Cholesky factorization. Failed factorizations are
          retried with growing jitter; if all fail the update is rejected
          with reason "singular S" and nothing is modified.
        - S⁻¹ is applied through triangular solves, never formed.
        - P is symmetrized after the update.
    """

    def __init__(self, jitter: float = 1e-12) -> None:
        self._jitter: float = jitter

    def apply(
        self,
        P: NDArray[np.float64],
        H: NDArray[np.float64],
        R: NDArray[np.float64],
        nu: NDArray[np.float64],
    ) -> UpdateResult:
        """Return the correction and posterior covariance for one update."""
        m: int = H.shape[0]
        if H.shape[1] != P.shape[0] or R.shape != (m, m) or nu.shape != (m,):
            raise ValueError("update dimensions are inconsistent")
        if not (np.all(np.isfinite(H)) and np.all(np.isfinite(nu))):
            return _rejected("non-finite linearization")

        ph_t: NDArray[np.float64] = P @ H.T
        s: NDArray[np.float64] = Linalg.symmetrize(H @ ph_t + R)
        scale: float = max(1.0, float(np.max(np.abs(np.diag(s)))))
        s = s + (self._jitter * scale) * np.eye(m)

        l: Optional[NDArray[np.float64]] = _cholesky(s)
        if l is None:
            for factor in _CHOLESKY_RETRY_FACTORS:
                l = _cholesky(s + (factor * scale) * np.eye(m))
                if l is not None:
                    break
            else:
                return _rejected("singular S")

        y: NDArray[np.float64] = np.linalg.solve(l, nu)
        maha_d2: float = float(y @ y)

        tmp: NDArray[np.float64] = np.linalg.solve(l, ph_t.T)
        k_gain: NDArray[np.float64] = np.linalg.solve(l.T, tmp).T

        correction: NDArray[np.float64] = k_gain @ nu
        temp: NDArray[np.float64] = np.eye(P.shape[0]) - k_gain @ H
        covariance: NDArray[np.float64] = Linalg.symmetrize(
            temp @ P @ temp.T + k_gain @ R @ k_gain.T
        )
        return UpdateResult(
            report=UpdateReport(
                accepted=True, reason="", innovation_mahalanobis2=maha_d2
            ),
            correction=correction,
            covariance=covariance,
        )


def _cholesky(s: NDArray[np.float64]) -> Optional[NDArray[np.float64]]:
    try:
        return np.linalg.cholesky(s)
    except np.linalg.LinAlgError:
        return None


def _rejected(reason: str) -> UpdateResult:
    return UpdateResult(
        report=UpdateReport(
            accepted=False, reason=reason, innovation_mahalanobis2=None
        ),
        correction=None,
        covariance=None,
    )
