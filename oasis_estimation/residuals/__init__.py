################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Concrete process and measurement models."""

from __future__ import annotations

from oasis_estimation.residuals.accelerometer_residual import (
    ACCELEROMETER_MEASUREMENT,
)
from oasis_estimation.residuals.accelerometer_residual import (
    AccelerometerPrediction,
)
from oasis_estimation.residuals.accelerometer_residual import AccelerometerResidual
from oasis_estimation.residuals.imu_prediction import IMU_MEASUREMENT
from oasis_estimation.residuals.imu_prediction import IMU_STATE
from oasis_estimation.residuals.imu_prediction import ImuPrediction
from oasis_estimation.residuals.pose_update import POSE_MEASUREMENT
from oasis_estimation.residuals.pose_update import PoseUpdate
from oasis_estimation.residuals.random_walk_prediction import RandomWalkPrediction
from oasis_estimation.residuals.velocity_residual import VelocityResidual


__all__ = [
    "ACCELEROMETER_MEASUREMENT",
    "AccelerometerPrediction",
    "AccelerometerResidual",
    "IMU_MEASUREMENT",
    "IMU_STATE",
    "ImuPrediction",
    "POSE_MEASUREMENT",
    "PoseUpdate",
    "RandomWalkPrediction",
    "VelocityResidual",
]
