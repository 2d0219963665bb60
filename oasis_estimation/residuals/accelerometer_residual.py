################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Velocity models driven by a world-frame acceleration measurement."""

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
from oasis_estimation.model.residual import Prediction


# Acceleration in m/s^2, held constant over the interval it closes
ACCELEROMETER_MEASUREMENT: ElementVectorDefinition = ElementVectorDefinition(
    [("acc", "vec3")]
)

_VELOCITY: ElementVectorDefinition = ElementVectorDefinition([("vel", "vec3")])


class AccelerometerResidual(BinaryResidual):
    """Velocity change constraint.

    Residual:
        r = vel_pre + dt * acc - vel_cur + n_vel
    """

    def __init__(self, noise_covariance: Optional[NDArray[np.float64]] = None) -> None:
        super().__init__(
            _VELOCITY,
            _VELOCITY,
            _VELOCITY,
            _VELOCITY,
            ACCELEROMETER_MEASUREMENT,
            is_splittable=True,
            is_mergeable=True,
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
            "vel",
            pre.get("vel") + dt * meas.get("acc") - cur.get("vel") + noi.get("vel"),
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
        self.set_jac_block(J, GROUP_PRE, "vel", "vel", np.eye(3))

    def jac_cur(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_CUR, "vel", "vel", -np.eye(3))

    def jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_NOI, "vel", "vel", np.eye(3))


class AccelerometerPrediction(Prediction):
    """Velocity process model, ``vel_cur = vel_pre + dt * acc + n_vel``."""

    def __init__(self, noise_covariance: Optional[NDArray[np.float64]] = None) -> None:
        super().__init__(
            _VELOCITY,
            _VELOCITY,
            ACCELEROMETER_MEASUREMENT,
            noise_covariance=noise_covariance,
        )

    def predict(
        self,
        cur: ElementVector,
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        cur.set("vel", pre.get("vel") + dt * meas.get("acc") + noi.get("vel"))

    def predict_jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_PRE, "vel", "vel", np.eye(3))

    def predict_jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        self.set_jac_block(J, GROUP_NOI, "vel", "vel", np.eye(3))
