################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Differentiable maps between element vectors.

A transformation maps one or more named input groups of element vectors to
one output element vector:

    out = f(inputs["group_a"], inputs["group_b"], ..., meas, dt)

Jacobians are taken in tangent space. The Jacobian with respect to group
``g`` has shape ``(out_dim, dim(g))`` and column ``k`` is the derivative of
``f(.., g [+] e_k, ..) [-] f(..)``.

Jacobian blocks are addressed by (output element, input element) name pairs.
Callers zero the Jacobian before ``jac_transform`` writes into it, so blocks
that a concrete transformation never touches stay zero.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Callable
from typing import Mapping
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.math_utils.covariance import Covariance
from oasis_estimation.math_utils.covariance import CovarianceError


# Default perturbation for finite-difference Jacobians
FD_EPSILON: float = 1e-6


class TransformationError(Exception):
    """Raised when transformation inputs or Jacobian blocks are invalid."""


class Transformation(ABC):
    """Base class for maps from named input groups to an output vector."""

    def __init__(
        self,
        output_definition: ElementVectorDefinition,
        input_definitions: Mapping[str, ElementVectorDefinition],
    ) -> None:
        self._output_definition: ElementVectorDefinition = output_definition
        self._input_definitions: dict[str, ElementVectorDefinition] = dict(
            input_definitions
        )

    def output_definition(self) -> ElementVectorDefinition:
        return self._output_definition

    def input_definition(self, group: str) -> ElementVectorDefinition:
        if group not in self._input_definitions:
            raise TransformationError(f"unknown input group {group!r}")
        return self._input_definitions[group]

    def input_groups(self) -> tuple[str, ...]:
        return tuple(self._input_definitions)

    @abstractmethod
    def eval_transform(
        self,
        out: ElementVector,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        """Write the transformed value into ``out``."""

    @abstractmethod
    def jac_transform(
        self,
        J: NDArray[np.float64],
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector],
        dt: float,
    ) -> None:
        """Write the Jacobian blocks of one input group into the zeroed ``J``."""

    def evaluate(
        self,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
    ) -> ElementVector:
        """Return the output vector for the given inputs."""
        self._check_inputs(inputs)
        out: ElementVector = ElementVector(self._output_definition)
        self.eval_transform(out, inputs, meas, dt)
        return out

    def jacobian(
        self,
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
    ) -> NDArray[np.float64]:
        """Return the analytic Jacobian with respect to one input group."""
        self._check_inputs(inputs)
        J: NDArray[np.float64] = np.zeros(
            (self._output_definition.dim(), self.input_definition(group).dim()),
            dtype=float,
        )
        if J.size:
            self.jac_transform(J, group, inputs, meas, dt)
        return J

    def jac_fd(
        self,
        group: str,
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
        eps: float = FD_EPSILON,
    ) -> NDArray[np.float64]:
        """Return the central-difference Jacobian with respect to one group."""
        self._check_inputs(inputs)

        def perturbed(x: ElementVector) -> ElementVector:
            shifted: dict[str, ElementVector] = dict(inputs)
            shifted[group] = x
            out: ElementVector = ElementVector(self._output_definition)
            self.eval_transform(out, shifted, meas, dt)
            return out

        return finite_difference_jacobian(perturbed, inputs[group], eps)

    def set_jac_block(
        self,
        J: NDArray[np.float64],
        group: str,
        out_name: str,
        in_name: str,
        block: Any,
    ) -> None:
        """Write the block for (output element, input element) into ``J``."""
        rows: slice = self._output_definition.tangent_slice(out_name)
        cols: slice = self.input_definition(group).tangent_slice(in_name)
        value: NDArray[np.float64] = np.asarray(block, dtype=float)
        shape: tuple[int, int] = (rows.stop - rows.start, cols.stop - cols.start)
        if value.shape != shape:
            raise TransformationError(
                f"block ({out_name}, {in_name}) must have shape {shape}, "
                f"got {value.shape}"
            )
        J[rows, cols] = value

    def transform_cov_mat(
        self,
        cov: NDArray[np.float64],
        inputs: Mapping[str, ElementVector],
        meas: Optional[ElementVector] = None,
        dt: float = 0.0,
    ) -> NDArray[np.float64]:
        """Propagate a covariance through the linearized map, ``J P J^T``.

        ``cov`` spans the concatenated tangent spaces of all input groups in
        their declared order.
        """
        J: NDArray[np.float64] = np.hstack(
            [self.jacobian(group, inputs, meas, dt) for group in self.input_groups()]
        )
        P: NDArray[np.float64] = np.asarray(cov, dtype=float)
        if P.shape != (J.shape[1], J.shape[1]):
            raise TransformationError(
                f"covariance must have shape ({J.shape[1]}, {J.shape[1]})"
            )
        try:
            return Covariance(P).propagated(J).as_array()
        except CovarianceError as exc:
            raise TransformationError(f"cannot propagate covariance: {exc}") from exc

    def _check_inputs(self, inputs: Mapping[str, ElementVector]) -> None:
        for group, definition in self._input_definitions.items():
            vector: Optional[ElementVector] = inputs.get(group)
            if vector is None:
                raise TransformationError(f"missing input group {group!r}")
            if vector.definition != definition:
                raise TransformationError(
                    f"input group {group!r} does not match its definition"
                )


def finite_difference_jacobian(
    fn: Callable[[ElementVector], ElementVector],
    x: ElementVector,
    eps: float = FD_EPSILON,
) -> NDArray[np.float64]:
    """Return the central-difference tangent Jacobian of ``fn`` at ``x``."""
    y0: ElementVector = fn(x)
    J: NDArray[np.float64] = np.zeros((y0.dim(), x.dim()), dtype=float)
    delta: NDArray[np.float64] = np.zeros(x.dim(), dtype=float)
    for k in range(x.dim()):
        delta[k] = eps
        y_plus: NDArray[np.float64] = fn(x.box_plus(delta)).box_minus(y0)
        delta[k] = -eps
        y_minus: NDArray[np.float64] = fn(x.box_plus(delta)).box_minus(y0)
        delta[k] = 0.0
        J[:, k] = (y_plus - y_minus) / (2.0 * eps)
    return J
