################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Residual models: binary transitions, unary updates and predictions.

Every residual is a Transformation over the input groups

    pre: state at the previous evaluation time (absent for unary updates)
    cur: state at the current evaluation time
    noi: noise tangent, evaluated at zero by the filter

The measurement and the interval length ``dt`` (seconds) are passed to every
call and never stored on the residual, so one instance can be evaluated for
any number of intervals.

Noise model:
    Transition residuals (binary and prediction) treat their noise covariance
    ``R`` as a density and use ``R * dt`` over an interval. Unary updates use
    ``R`` unscaled.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any
from typing import Mapping
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import VectorElement
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.math_utils.covariance import Covariance
from oasis_estimation.math_utils.covariance import CovarianceError
from oasis_estimation.model.transformation import FD_EPSILON
from oasis_estimation.model.transformation import Transformation
from oasis_estimation.model.transformation import finite_difference_jacobian
from oasis_estimation.model.verification import JACOBIAN_TOLERANCE
from oasis_estimation.model.verification import JacobianCheck
from oasis_estimation.model.verification import assert_jacobian_close
from oasis_estimation.model.verification import check_jacobians


GROUP_PRE: str = "pre"
GROUP_CUR: str = "cur"
GROUP_NOI: str = "noi"

# Interval used by Jacobian verification when none is given, in seconds
VERIFY_DT_SEC: float = 0.1


class ResidualError(Exception):
    """Raised when a residual model is misconfigured or misused."""


@dataclass(frozen=True)
class Linearization:
    """Residual value and Jacobians at one linearization point.

    Attributes:
        residual: Residual tangent, shape (m,)
        jac_pre: Jacobian w.r.t. the previous state, shape (m, n_pre)
        jac_cur: Jacobian w.r.t. the current state, shape (m, n_cur)
        jac_noi: Jacobian w.r.t. the noise, shape (m, n_noi)
    """

    residual: NDArray[np.float64]
    jac_pre: NDArray[np.float64]
    jac_cur: NDArray[np.float64]
    jac_noi: NDArray[np.float64]


class Residual(Transformation):
    """Common behavior of all residual models."""

    def __init__(
        self,
        residual_definition: ElementVectorDefinition,
        pre_definition: ElementVectorDefinition,
        cur_definition: ElementVectorDefinition,
        noise_definition: ElementVectorDefinition,
        measurement_definition: Optional[ElementVectorDefinition] = None,
        *,
        is_unary: bool = False,
        is_splittable: bool = False,
        is_mergeable: bool = False,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        groups: dict[str, ElementVectorDefinition] = {}
        if not is_unary:
            groups[GROUP_PRE] = pre_definition
        groups[GROUP_CUR] = cur_definition
        groups[GROUP_NOI] = noise_definition
        super().__init__(residual_definition, groups)

        self._pre_definition: ElementVectorDefinition = pre_definition
        self._cur_definition: ElementVectorDefinition = cur_definition
        self._noise_definition: ElementVectorDefinition = noise_definition
        self._measurement_definition: ElementVectorDefinition = (
            measurement_definition
            if measurement_definition is not None
            else ElementVectorDefinition()
        )
        self._is_unary: bool = is_unary
        self._is_splittable: bool = is_splittable
        self._is_mergeable: bool = is_mergeable
        self._noise_covariance: NDArray[np.float64] = np.eye(noise_definition.dim())
        if noise_covariance is not None:
            self.set_noise_covariance(noise_covariance)

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def residual_definition(self) -> ElementVectorDefinition:
        return self.output_definition()

    @property
    def pre_definition(self) -> ElementVectorDefinition:
        return self._pre_definition

    @property
    def cur_definition(self) -> ElementVectorDefinition:
        return self._cur_definition

    @property
    def noise_definition(self) -> ElementVectorDefinition:
        return self._noise_definition

    @property
    def measurement_definition(self) -> ElementVectorDefinition:
        return self._measurement_definition

    @property
    def is_unary(self) -> bool:
        return self._is_unary

    @property
    def is_splittable(self) -> bool:
        return self._is_splittable

    @property
    def is_mergeable(self) -> bool:
        return self._is_mergeable

    def requires_jacobian(self, group: str) -> bool:
        """True when the group exists and has a non-empty tangent."""
        return group in self.input_groups() and self.input_definition(group).dim() > 0

    def noise_covariance(self) -> NDArray[np.float64]:
        return self._noise_covariance.copy()

    def set_noise_covariance(self, R: NDArray[np.float64]) -> None:
        """Replace the noise covariance over the noise tangent."""
        dim: int = self._noise_definition.dim()
        try:
            cov: Covariance = Covariance(np.asarray(R, dtype=float))
            cov.assert_psd()
        except CovarianceError as exc:
            raise ResidualError(f"{self.name} noise covariance: {exc}") from exc
        if cov.dim() != dim:
            raise ResidualError(
                f"{self.name} noise covariance must have shape ({dim}, {dim})"
            )
        self._noise_covariance = cov.as_array()

    def scale_noise_covariance(self, factor: float) -> None:
        """Multiply the noise covariance by a non-negative factor."""
        try:
            scaled: Covariance = Covariance(self._noise_covariance).scaled(factor)
        except CovarianceError as exc:
            raise ResidualError(f"{self.name} noise scale: {exc}") from exc
        self._noise_covariance = scaled.as_array()

    def effective_noise_covariance(self, dt: float) -> NDArray[np.float64]:
        """Return the noise covariance applied over an interval of ``dt``."""
        if self._is_unary:
            return self._noise_covariance.copy()
        return self._noise_covariance * dt

    def make_measurement(self, **values: Any) -> ElementVector:
        """Build a measurement conforming to this residual's definition."""
        return ElementVector(self._measurement_definition, values)

    def split_measurement(
        self, meas: ElementVector, t0: int, t1: int, t2: int
    ) -> ElementVector:
        """Return the measurement governing ``(t0, t1]`` when splitting.

        ``meas`` governs ``(t0, t2]`` and keeps governing ``(t1, t2]``
        afterwards. The default holds the measurement constant.
        """
        if not t0 < t1 < t2:
            raise ResidualError("split requires t0 < t1 < t2")
        return meas.copy()

    def merge_measurements(
        self,
        meas1: ElementVector,
        meas2: ElementVector,
        t0: int,
        t1: int,
        t2: int,
    ) -> ElementVector:
        """Return one measurement governing ``(t0, t2]``.

        ``meas1`` governs ``(t0, t1]`` and ``meas2`` governs ``(t1, t2]``.
        The default interpolates on the manifold weighted by interval length:

            meas2 [+] ((t1 - t0) / (t2 - t0)) * (meas1 [-] meas2)
        """
        if not t0 < t1 < t2:
            raise ResidualError("merge requires t0 < t1 < t2")
        weight: float = float(t1 - t0) / float(t2 - t0)
        return meas2.box_plus(weight * meas1.box_minus(meas2))

    def inputs_for(
        self,
        pre: Optional[ElementVector],
        cur: ElementVector,
        noi: Optional[ElementVector] = None,
    ) -> dict[str, ElementVector]:
        """Return the input group mapping, defaulting noise to zero."""
        if noi is None:
            noi = ElementVector(self._noise_definition)
        inputs: dict[str, ElementVector] = {GROUP_CUR: cur, GROUP_NOI: noi}
        if not self._is_unary:
            if pre is None:
                raise ResidualError(f"{self.name} requires a previous state")
            inputs[GROUP_PRE] = pre
        return inputs

    def evaluate_residual(
        self,
        pre: Optional[ElementVector],
        cur: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
        noi: Optional[ElementVector] = None,
    ) -> ElementVector:
        """Evaluate the residual; a missing measurement defaults to identity."""
        return self.evaluate(
            self.inputs_for(pre, cur, noi), self._measurement_or_identity(meas), dt
        )

    def linearize(
        self,
        pre: Optional[ElementVector],
        cur: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
        noi: Optional[ElementVector] = None,
    ) -> Linearization:
        """Return the residual tangent and its Jacobians."""
        measurement: ElementVector = self._measurement_or_identity(meas)
        inputs: dict[str, ElementVector] = self.inputs_for(pre, cur, noi)
        residual: NDArray[np.float64] = self.evaluate(
            inputs, measurement, dt
        ).to_tangent()
        jacobians: dict[str, NDArray[np.float64]] = {}
        for group in (GROUP_PRE, GROUP_CUR, GROUP_NOI):
            if self.requires_jacobian(group):
                jacobians[group] = self.jacobian(group, inputs, measurement, dt)
            else:
                jacobians[group] = np.zeros(
                    (residual.shape[0], self._group_dim(group)), dtype=float
                )
        return Linearization(
            residual=residual,
            jac_pre=jacobians[GROUP_PRE],
            jac_cur=jacobians[GROUP_CUR],
            jac_noi=jacobians[GROUP_NOI],
        )

    def verify_jacobians(
        self,
        pre: Optional[ElementVector],
        cur: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = VERIFY_DT_SEC,
        noi: Optional[ElementVector] = None,
        eps: float = FD_EPSILON,
        tolerance: float = JACOBIAN_TOLERANCE,
    ) -> list[JacobianCheck]:
        """Check every analytic Jacobian against finite differences.

        Raises:
            JacobianMismatchError: A Jacobian deviates beyond the tolerance
        """
        return check_jacobians(
            self,
            self.inputs_for(pre, cur, noi),
            self._measurement_or_identity(meas),
            dt,
            eps,
            tolerance,
        )

    def _group_dim(self, group: str) -> int:
        if group == GROUP_PRE:
            return 0 if self._is_unary else self._pre_definition.dim()
        if group == GROUP_CUR:
            return self._cur_definition.dim()
        return self._noise_definition.dim()

    def _measurement_or_identity(self, meas: Optional[ElementVector]) -> ElementVector:
        if meas is None:
            return ElementVector(self._measurement_definition)
        if meas.definition != self._measurement_definition:
            raise ResidualError(f"{self.name} received a foreign measurement")
        return meas


class BinaryResidual(Residual):
    """Residual constraining the previous and the current state.

    Subclasses implement ``eval_residual`` and the analytic Jacobians
    ``jac_pre``, ``jac_cur`` and ``jac_noi``. Each Jacobian method receives a
    zeroed matrix and writes its blocks with ``set_jac_block``.
    """

    def __init__(
        self,
        residual_definition: ElementVectorDefinition,
        pre_definition: ElementVectorDefinition,
        cur_definition: ElementVectorDefinition,
        noise_definition: ElementVectorDefinition,
        measurement_definition: Optional[ElementVectorDefinition] = None,
        *,
        is_splittable: bool = False,
        is_mergeable: bool = False,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        super().__init__(
            residual_definition,
            pre_definition,
            cur_definition,
            noise_definition,
            measurement_definition,
            is_unary=False,
            is_splittable=is_splittable,
            is_mergeable=is_mergeable,
            noise_covariance=noise_covariance,
        )

    @abstractmethod
    def eval_residual(
        self,
        res: ElementVector,
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the residual into ``res``."""

    @abstractmethod
    def jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the Jacobian w.r.t. the previous state."""

    @abstractmethod
    def jac_cur(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the Jacobian w.r.t. the current state."""

    @abstractmethod
    def jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the Jacobian w.r.t. the noise."""

    def eval_transform(
        self,
        out: ElementVector,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        self.eval_residual(
            out,
            inputs[GROUP_PRE],
            inputs[GROUP_CUR],
            inputs[GROUP_NOI],
            self._measurement_or_identity(meas),
            dt,
        )

    def jac_transform(
        self,
        J: NDArray[np.float64],
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        args: tuple[ElementVector, ...] = (
            inputs[GROUP_PRE],
            inputs[GROUP_CUR],
            inputs[GROUP_NOI],
            self._measurement_or_identity(meas),
        )
        if group == GROUP_PRE:
            self.jac_pre(J, *args, dt)
        elif group == GROUP_CUR:
            self.jac_cur(J, *args, dt)
        else:
            self.jac_noi(J, *args, dt)


class UnaryUpdate(Residual):
    """Residual constraining only the current state against a measurement.

    Unary updates are observations: they never span an interval, so ``dt``
    is ignored and the noise covariance is used unscaled.
    """

    def __init__(
        self,
        residual_definition: ElementVectorDefinition,
        cur_definition: ElementVectorDefinition,
        noise_definition: ElementVectorDefinition,
        measurement_definition: Optional[ElementVectorDefinition] = None,
        *,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        super().__init__(
            residual_definition,
            ElementVectorDefinition(),
            cur_definition,
            noise_definition,
            measurement_definition,
            is_unary=True,
            noise_covariance=noise_covariance,
        )

    @abstractmethod
    def eval_residual(
        self,
        res: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        """Write the residual into ``res``."""

    @abstractmethod
    def jac_cur(
        self,
        J: NDArray[np.float64],
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        """Write the Jacobian w.r.t. the current state."""

    @abstractmethod
    def jac_noi(
        self,
        J: NDArray[np.float64],
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
    ) -> None:
        """Write the Jacobian w.r.t. the noise."""

    def eval_transform(
        self,
        out: ElementVector,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        self.eval_residual(
            out,
            inputs[GROUP_CUR],
            inputs[GROUP_NOI],
            self._measurement_or_identity(meas),
        )

    def jac_transform(
        self,
        J: NDArray[np.float64],
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        measurement: ElementVector = self._measurement_or_identity(meas)
        if group == GROUP_CUR:
            self.jac_cur(J, inputs[GROUP_CUR], inputs[GROUP_NOI], measurement)
        else:
            self.jac_noi(J, inputs[GROUP_CUR], inputs[GROUP_NOI], measurement)


class Prediction(BinaryResidual):
    """Process model producing the current state from the previous one.

    Subclasses implement ``predict`` and its Jacobians ``predict_jac_pre`` and
    ``predict_jac_noi``, writing blocks with ``set_jac_block`` where the output
    element names are the state element names.

    As a residual a prediction reads

        res = predict(pre, noi) [-] cur

    with one flat residual element per state element.
    """

    def __init__(
        self,
        state_definition: ElementVectorDefinition,
        noise_definition: ElementVectorDefinition,
        measurement_definition: Optional[ElementVectorDefinition] = None,
        *,
        is_splittable: bool = True,
        is_mergeable: bool = True,
        noise_covariance: Optional[NDArray[np.float64]] = None,
    ) -> None:
        residual_definition: ElementVectorDefinition = ElementVectorDefinition(
            (name, VectorElement(element_type.dim))
            for name, element_type in state_definition.items()
        )
        super().__init__(
            residual_definition,
            state_definition,
            state_definition,
            noise_definition,
            measurement_definition,
            is_splittable=is_splittable,
            is_mergeable=is_mergeable,
            noise_covariance=noise_covariance,
        )

    @property
    def state_definition(self) -> ElementVectorDefinition:
        return self.cur_definition

    @abstractmethod
    def predict(
        self,
        cur: ElementVector,
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the predicted state into ``cur``."""

    @abstractmethod
    def predict_jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the Jacobian of the prediction w.r.t. the previous state."""

    @abstractmethod
    def predict_jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        """Write the Jacobian of the prediction w.r.t. the noise."""

    def evaluate_prediction(
        self,
        pre: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
        noi: Optional[ElementVector] = None,
    ) -> ElementVector:
        """Return the predicted state, with zero noise by default."""
        out: ElementVector = ElementVector(self.state_definition)
        self.predict(
            out,
            pre,
            noi if noi is not None else ElementVector(self.noise_definition),
            self._measurement_or_identity(meas),
            dt,
        )
        return out

    def prediction_jacobians(
        self,
        pre: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
        noi: Optional[ElementVector] = None,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return the prediction Jacobians ``(F, G)`` w.r.t. state and noise."""
        measurement: ElementVector = self._measurement_or_identity(meas)
        noise: ElementVector = (
            noi if noi is not None else ElementVector(self.noise_definition)
        )
        n: int = self.state_definition.dim()
        F: NDArray[np.float64] = np.zeros((n, n), dtype=float)
        G: NDArray[np.float64] = np.zeros((n, self.noise_definition.dim()), dtype=float)
        self.predict_jac_pre(F, pre, noise, measurement, dt)
        if G.size:
            self.predict_jac_noi(G, pre, noise, measurement, dt)
        return F, G

    def verify_prediction_jacobians(
        self,
        pre: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = VERIFY_DT_SEC,
        noi: Optional[ElementVector] = None,
        eps: float = FD_EPSILON,
        tolerance: float = JACOBIAN_TOLERANCE,
    ) -> None:
        """Check ``predict_jac_pre`` and ``predict_jac_noi`` numerically."""
        measurement: ElementVector = self._measurement_or_identity(meas)
        noise: ElementVector = (
            noi if noi is not None else ElementVector(self.noise_definition)
        )
        F, G = self.prediction_jacobians(pre, measurement, dt, noise)
        F_fd: NDArray[np.float64] = finite_difference_jacobian(
            lambda x: self.evaluate_prediction(x, measurement, dt, noise), pre, eps
        )
        assert_jacobian_close(self.name, GROUP_PRE, F, F_fd, tolerance)
        G_fd: NDArray[np.float64] = finite_difference_jacobian(
            lambda x: self.evaluate_prediction(pre, measurement, dt, x), noise, eps
        )
        assert_jacobian_close(self.name, GROUP_NOI, G, G_fd, tolerance)

    def eval_residual(
        self,
        res: ElementVector,
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        predicted: ElementVector = self.evaluate_prediction(pre, meas, dt, noi)
        tangent: NDArray[np.float64] = predicted.box_minus(cur)
        for name in self.state_definition.names():
            res.set(name, tangent[self.state_definition.tangent_slice(name)])

    def jac_pre(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        predicted: ElementVector = self.evaluate_prediction(pre, meas, dt, noi)
        J_predicted: NDArray[np.float64] = predicted.box_minus_jacobians(cur)[0]
        F: NDArray[np.float64] = self.prediction_jacobians(pre, meas, dt, noi)[0]
        J[:, :] = J_predicted @ F

    def jac_cur(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        predicted: ElementVector = self.evaluate_prediction(pre, meas, dt, noi)
        J[:, :] = predicted.box_minus_jacobians(cur)[1]

    def jac_noi(
        self,
        J: NDArray[np.float64],
        pre: ElementVector,
        cur: ElementVector,
        noi: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> None:
        predicted: ElementVector = self.evaluate_prediction(pre, meas, dt, noi)
        J_predicted: NDArray[np.float64] = predicted.box_minus_jacobians(cur)[0]
        G: NDArray[np.float64] = self.prediction_jacobians(pre, meas, dt, noi)[1]
        J[:, :] = J_predicted @ G
