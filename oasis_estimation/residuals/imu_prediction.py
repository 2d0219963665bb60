################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Strapdown IMU process model."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.math_utils.linalg import SO3
from oasis_estimation.math_utils.quat import Quaternion
from oasis_estimation.math_utils.units import PhysicalConstants
from oasis_estimation.model.residual import GROUP_NOI
from oasis_estimation.model.residual import GROUP_PRE
from oasis_estimation.model.residual import Prediction


# Navigation state: world position and velocity, body-to-world attitude,
# gyro bias and accelerometer bias
IMU_STATE: ElementVectorDefinition = ElementVectorDefinition(
    [
        ("pos", "vec3"),
        ("vel", "vec3"),
        ("att", "quat"),
        ("gyb", "vec3"),
        ("acb", "vec3"),
    ]
)

# Process noise densities, one flat element per state element
IMU_NOISE: ElementVectorDefinition = ElementVectorDefinition(
    [
        ("pos", "vec3"),
        ("vel", "vec3"),
        ("att", "vec3"),
        ("gyb", "vec3"),
        ("acb", "vec3"),
    ]
)

# Body rate in rad/s and specific force in m/s^2
IMU_MEASUREMENT: ElementVectorDefinition = ElementVectorDefinition(
    [("gyr", "vec3"), ("acc", "vec3")]
)


class ImuPrediction(Prediction):
    """First-order strapdown integration of gyro and accelerometer samples.

    With ``R = R(att_pre)``, ``f = acc - acb`` and
    ``phi = dt * (gyr - gyb) + n_att``:

        pos_cur = pos_pre + dt * vel_pre + n_pos
        vel_cur = vel_pre + dt * (R f + g) + n_vel
        att_cur = att_pre * Exp(phi)
        gyb_cur = gyb_pre + n_gyb
        acb_cur = acb_pre + n_acb

    Gravity ``g`` points along -z of the world frame by default.
    """

    def __init__(
        self,
        gravity: Optional[NDArray[np.float64]] = None,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        super().__init__(
            IMU_STATE,
            IMU_NOISE,
            IMU_MEASUREMENT,
            noise_covariance=noise_covariance,
        )
        self._gravity: NDArray[np.float64] = (
            np.array([0.0, 0.0, -PhysicalConstants.GRAVITY_MPS2])
            if gravity is None
            else np.array(gravity, dtype=float)
        )
        if self._gravity.shape != (3,):
            raise ValueError("gravity must be shape (3,)")

    @property
    def gravity(self) -> NDArray[np.float64]:
        return self._gravity.copy()

    def predict(
        self,
        cur: ElementVector,
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        att: Quaternion = pre.get("att")
        phi: NDArray[np.float64] = self._rotation_increment(pre, noi, meas, dt)
        specific_force: NDArray[np.float64] = meas.get("acc") - pre.get("acb")

        cur.set("pos", pre.get("pos") + dt * pre.get("vel") + noi.get("pos"))
        cur.set(
            "vel",
            pre.get("vel")
            + dt * (att.rotate(specific_force) + self._gravity)
            + noi.get("vel"),
        )
        cur.set("att", att * Quaternion.from_rotvec(phi))
        cur.set("gyb", pre.get("gyb") + noi.get("gyb"))
        cur.set("acb", pre.get("acb") + noi.get("acb"))

    def predict_jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        R: NDArray[np.float64] = pre.get("att").as_matrix()
        phi: NDArray[np.float64] = self._rotation_increment(pre, noi, meas, dt)
        specific_force: NDArray[np.float64] = meas.get("acc") - pre.get("acb")
        eye: NDArray[np.float64] = np.eye(3)

        self.set_jac_block(J, GROUP_PRE, "pos", "pos", eye)
        self.set_jac_block(J, GROUP_PRE, "pos", "vel", dt * eye)
        self.set_jac_block(J, GROUP_PRE, "vel", "vel", eye)
        self.set_jac_block(
            J, GROUP_PRE, "vel", "att", -dt * R @ SO3.hat(specific_force)
        )
        self.set_jac_block(J, GROUP_PRE, "vel", "acb", -dt * R)
        self.set_jac_block(J, GROUP_PRE, "att", "att", SO3.exp(phi).T)
        self.set_jac_block(J, GROUP_PRE, "att", "gyb", -dt * SO3.right_jacobian(phi))
        self.set_jac_block(J, GROUP_PRE, "gyb", "gyb", eye)
        self.set_jac_block(J, GROUP_PRE, "acb", "acb", eye)

    def predict_jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        phi: NDArray[np.float64] = self._rotation_increment(pre, noi, meas, dt)
        eye: NDArray[np.float64] = np.eye(3)

        self.set_jac_block(J, GROUP_NOI, "pos", "pos", eye)
        self.set_jac_block(J, GROUP_NOI, "vel", "vel", eye)
        self.set_jac_block(J, GROUP_NOI, "att", "att", SO3.right_jacobian(phi))
        self.set_jac_block(J, GROUP_NOI, "gyb", "gyb", eye)
        self.set_jac_block(J, GROUP_NOI, "acb", "acb", eye)

    @staticmethod
    def _rotation_increment(
        pre: ElementVector, noi: ElementVector, meas: ElementVector, dt: float
    ) -> NDArray[np.float64]:
        return dt * (meas.get("gyr") - pre.get("gyb")) + noi.get("att")
