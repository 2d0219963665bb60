################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Random walk process model over an arbitrary state."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import VectorElement
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.model.residual import GROUP_NOI
from oasis_estimation.model.residual import GROUP_PRE
from oasis_estimation.model.residual import Prediction


class RandomWalkPrediction(Prediction):
    """Predicts ``cur = pre [+] noi`` element by element.

    The noise has one flat element per state element with the same name and
    the element's tangent dimension. No measurement is required.
    """

    def __init__(
        self,
        state_definition: ElementVectorDefinition,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        super().__init__(
            state_definition,
            ElementVectorDefinition(
                (name, VectorElement(element_type.dim))
                for name, element_type in state_definition.items()
            ),
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
        for name, element_type in self.state_definition.items():
            cur.set(name, element_type.box_plus(pre.get(name), noi.get(name)))

    def predict_jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        for name, element_type in self.state_definition.items():
            J_x: NDArray[np.float64] = element_type.box_plus_jacobians(
                pre.get(name), noi.get(name)
            )[0]
            self.set_jac_block(J, GROUP_PRE, name, name, J_x)

    def predict_jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        for name, element_type in self.state_definition.items():
            J_d: NDArray[np.float64] = element_type.box_plus_jacobians(
                pre.get(name), noi.get(name)
            )[1]
            self.set_jac_block(J, GROUP_NOI, name, name, J_d)
