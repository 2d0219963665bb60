################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################
"""Physical constants and numeric guards."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


class PhysicalConstants:
    """Physical and numeric constants used by the estimator."""

    GRAVITY_MPS2: float = 9.80665
    EPS: float = 1e-12
    # Below this angle the series expansions of the SO(3) maps are used
    SMALL_ANGLE_RAD: float = 1e-8


def assert_finite(x: NDArray[np.float64], name: str) -> None:
    """Raise ValueError when the array contains non-finite values."""
    if not np.all(np.isfinite(x)):
        raise ValueError(f"{name} must be finite")
