################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Absolute pose observation."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import QuaternionElement
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.model.residual import GROUP_CUR
from oasis_estimation.model.residual import GROUP_NOI
from oasis_estimation.model.residual import UnaryUpdate


# Observed world position in meters and body-to-world attitude
POSE_MEASUREMENT: ElementVectorDefinition = ElementVectorDefinition(
    [("pos", "vec3"), ("att", "quat")]
)

_POSE_TANGENT: ElementVectorDefinition = ElementVectorDefinition(
    [("pos", "vec3"), ("att", "vec3")]
)

_ATTITUDE: QuaternionElement = QuaternionElement()


class PoseUpdate(UnaryUpdate):
    """Compares the current pose with a measured pose.

    Residual:
        r_pos = pos - pos_meas + n_pos
        r_att = (att [-] att_meas) + n_att
    """

    def __init__(self, noise_covariance: Optional[NDArray[np.float64]] = None) -> None:
        super().__init__(
            _POSE_TANGENT,
            POSE_MEASUREMENT,
            _POSE_TANGENT,
            POSE_MEASUREMENT,
            noise_covariance=noise_covariance,
        )

    def eval_residual(
        self,
        res: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        res.set("pos", cur.get("pos") - meas.get("pos") + noi.get("pos"))
        res.set(
            "att",
            _ATTITUDE.box_minus(cur.get("att"), meas.get("att")) + noi.get("att"),
        )

    def jac_cur(
        self,
        J: NDArray[np.float64],
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        self.set_jac_block(J, GROUP_CUR, "pos", "pos", np.eye(3))
        self.set_jac_block(
            J,
            GROUP_CUR,
            "att",
            "att",
            _ATTITUDE.box_minus_jacobians(cur.get("att"), meas.get("att"))[0],
        )

    def jac_noi(
        self,
        J: NDArray[np.float64],
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        self.set_jac_block(J, GROUP_NOI, "pos", "pos", np.eye(3))
        self.set_jac_block(J, GROUP_NOI, "att", "att", np.eye(3))
