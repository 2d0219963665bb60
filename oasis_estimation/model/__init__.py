################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Transformations, residual models and Jacobian verification."""

from __future__ import annotations

from oasis_estimation.model.residual import GROUP_CUR
from oasis_estimation.model.residual import GROUP_NOI
from oasis_estimation.model.residual import GROUP_PRE
from oasis_estimation.model.residual import BinaryResidual
from oasis_estimation.model.residual import Linearization
from oasis_estimation.model.residual import Prediction
from oasis_estimation.model.residual import Residual
from oasis_estimation.model.residual import ResidualError
from oasis_estimation.model.residual import UnaryUpdate
from oasis_estimation.model.transformation import Transformation
from oasis_estimation.model.transformation import TransformationError
from oasis_estimation.model.verification import JacobianMismatchError
from oasis_estimation.model.verification import check_jacobians


__all__ = [
    "BinaryResidual",
    "GROUP_CUR",
    "GROUP_NOI",
    "GROUP_PRE",
    "JacobianMismatchError",
    "Linearization",
    "Prediction",
    "Residual",
    "ResidualError",
    "Transformation",
    "TransformationError",
    "UnaryUpdate",
    "check_jacobians",
]
