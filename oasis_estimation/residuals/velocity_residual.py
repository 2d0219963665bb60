################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Constant-velocity position constraint."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.model.residual import GROUP_CUR
from oasis_estimation.model.residual import GROUP_NOI
from oasis_estimation.model.residual import GROUP_PRE
from oasis_estimation.model.residual import BinaryResidual


class VelocityResidual(BinaryResidual):
    """Integrates the previous velocity over the interval.

    Residual:
        r = pos_pre + dt * vel_pre - pos_cur + n_pos

    The residual has no measurement, so splitting an interval is exact. It is
    not merged, so every stamp is an evaluation time.
    """

    def __init__(self, noise_covariance: Optional[NDArray[np.float64]] = None) -> None:
        super().__init__(
            ElementVectorDefinition([("pos", "vec3")]),
            ElementVectorDefinition([("pos", "vec3"), ("vel", "vec3")]),
            ElementVectorDefinition([("pos", "vec3")]),
            ElementVectorDefinition([("pos", "vec3")]),
            is_splittable=True,
            noise_covariance=noise_covariance,
        )

    def eval_residual(
        self,
        res: ElementVector,
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        res.set(
            "pos",
            pre.get("pos") + dt * pre.get("vel") - cur.get("pos") + noi.get("pos"),
        )

    def jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_PRE, "pos", "pos", np.eye(3))
        self.set_jac_block(J, GROUP_PRE, "pos", "vel", dt * np.eye(3))

    def jac_cur(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_CUR, "pos", "pos", -np.eye(3))

    def jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_NOI, "pos", "pos", np.eye(3))
