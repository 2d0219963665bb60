################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Manifold element types and the type-tag registry.

An element type describes one kind of value the estimator can hold: its
tangent dimension, identity value and the local chart operations

    box_plus(x, d) = x [+] d
    box_minus(y, x) = y [-] x

which satisfy ``box_minus(box_plus(x, d), x) == d`` and
``box_plus(x, box_minus(y, x)) == y``. Element types are stateless and may be
shared between any number of definitions.

Jacobians are expressed in the tangent space of each value, so the Jacobian of
``x [+] d`` with respect to ``x`` is the derivative of the result tangent with
respect to a perturbation ``x [+] e``.
"""

from __future__ import annotations

import re
from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Optional
from typing import Union

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.math_utils.linalg import SO3
from oasis_estimation.math_utils.linalg import Linalg
from oasis_estimation.math_utils.quat import Quaternion


class ElementDimensionError(Exception):
    """Raised when a tangent vector does not match an element dimension."""


class ElementTypeMismatchError(Exception):
    """Raised when a value or type does not match the declared element type."""


class ElementTypeSpecError(Exception):
    """Raised when an element type tag cannot be resolved."""


class ElementType(ABC):
    """Base class for manifold element types."""

    @property
    @abstractmethod
    def tag(self) -> str:
        """Registry tag that identifies this type."""

    @property
    @abstractmethod
    def dim(self) -> int:
        """Tangent space dimension."""

    @abstractmethod
    def identity(self) -> Any:
        """Return a new identity value."""

    @abstractmethod
    def validate(self, value: Any) -> Any:
        """Return the value in canonical storage form or raise."""

    @abstractmethod
    def copy(self, value: Any) -> Any:
        """Return an independent copy of a value."""

    @abstractmethod
    def box_plus(self, value: Any, delta: NDArray[np.float64]) -> Any:
        """Return ``value [+] delta`` as a new value."""

    @abstractmethod
    def box_minus(self, value: Any, other: Any) -> NDArray[np.float64]:
        """Return the tangent vector ``value [-] other``."""

    @abstractmethod
    def box_plus_jacobians(
        self, value: Any, delta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return the Jacobians of ``value [+] delta`` w.r.t. value and delta."""

    @abstractmethod
    def box_minus_jacobians(
        self, value: Any, other: Any
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return the Jacobians of ``value [-] other`` w.r.t. value and other."""

    def describe(self, value: Any) -> str:
        """Return a short human readable rendering of a value."""
        return repr(value)

    def check_delta(self, delta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return delta as a float array, raising if its size is wrong."""
        vec: NDArray[np.float64] = np.asarray(delta, dtype=float).reshape(-1)
        if vec.shape != (self.dim,):
            raise ElementDimensionError(
                f"{self.tag} expects a tangent of dimension {self.dim}, "
                f"got {vec.shape[0]}"
            )
        return vec

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ElementType):
            return NotImplemented
        return type(self) is type(other) and self.tag == other.tag

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.tag))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.tag!r})"


class ScalarElement(ElementType):
    """Real scalar stored as a Python float."""

    @property
    def tag(self) -> str:
        return "scalar"

    @property
    def dim(self) -> int:
        return 1

    def identity(self) -> float:
        return 0.0

    def validate(self, value: Any) -> float:
        if isinstance(value, bool):
            raise ElementTypeMismatchError("scalar element cannot hold a bool")
        if isinstance(value, np.ndarray) and value.size == 1:
            return float(value.reshape(-1)[0])
        if not isinstance(value, (int, float, np.integer, np.floating)):
            raise ElementTypeMismatchError(
                f"scalar element cannot hold {type(value).__name__}"
            )
        return float(value)

    def copy(self, value: Any) -> float:
        return float(value)

    def box_plus(self, value: Any, delta: NDArray[np.float64]) -> float:
        return float(value) + float(self.check_delta(delta)[0])

    def box_minus(self, value: Any, other: Any) -> NDArray[np.float64]:
        return np.array([float(value) - float(other)], dtype=float)

    def box_plus_jacobians(
        self, value: Any, delta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return np.eye(1), np.eye(1)

    def box_minus_jacobians(
        self, value: Any, other: Any
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return np.eye(1), -np.eye(1)

    def describe(self, value: Any) -> str:
        return f"{float(value):.6g}"


class VectorElement(ElementType):
    """Flat vector of fixed size stored as a numpy array."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ElementTypeSpecError("vector size must be positive")
        self._size: int = int(size)

    @property
    def tag(self) -> str:
        return f"vec{self._size}"

    @property
    def dim(self) -> int:
        return self._size

    def identity(self) -> NDArray[np.float64]:
        return np.zeros(self._size, dtype=float)

    def validate(self, value: Any) -> NDArray[np.float64]:
        if isinstance(value, Quaternion):
            raise ElementTypeMismatchError(
                f"{self.tag} element cannot hold a quaternion"
            )
        try:
            # Float arrays are stored without a copy
            vec: NDArray[np.float64] = np.asarray(value, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise ElementTypeMismatchError(
                f"{self.tag} element cannot hold {type(value).__name__}"
            ) from exc
        if vec.shape != (self._size,):
            raise ElementTypeMismatchError(
                f"{self.tag} element requires shape ({self._size},), got {vec.shape}"
            )
        return vec

    def copy(self, value: Any) -> NDArray[np.float64]:
        return np.array(value, dtype=float)

    def box_plus(self, value: Any, delta: NDArray[np.float64]) -> NDArray[np.float64]:
        return np.asarray(value, dtype=float) + self.check_delta(delta)

    def box_minus(self, value: Any, other: Any) -> NDArray[np.float64]:
        return np.asarray(value, dtype=float) - np.asarray(other, dtype=float)

    def box_plus_jacobians(
        self, value: Any, delta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return np.eye(self._size), np.eye(self._size)

    def box_minus_jacobians(
        self, value: Any, other: Any
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return np.eye(self._size), -np.eye(self._size)

    def describe(self, value: Any) -> str:
        return np.array2string(np.asarray(value), precision=6)


class QuaternionElement(ElementType):
    """Unit quaternion rotation with a three dimensional tangent.

    Uses the right perturbation: ``q [+] d = q * Exp(d)`` and
    ``p [-] q = Log(q^-1 * p)``.
    """

    @property
    def tag(self) -> str:
        return "quat"

    @property
    def dim(self) -> int:
        return 3

    def identity(self) -> Quaternion:
        return Quaternion.identity()

    def validate(self, value: Any) -> Quaternion:
        if isinstance(value, Quaternion):
            return value
        if isinstance(value, (np.ndarray, list, tuple)) and np.shape(value) == (4,):
            try:
                return Quaternion(np.asarray(value, dtype=float))
            except ValueError as exc:
                raise ElementTypeMismatchError(str(exc)) from exc
        raise ElementTypeMismatchError(
            f"quat element cannot hold {type(value).__name__}"
        )

    def copy(self, value: Any) -> Quaternion:
        return value

    def box_plus(self, value: Any, delta: NDArray[np.float64]) -> Quaternion:
        return value * Quaternion.from_rotvec(self.check_delta(delta))

    def box_minus(self, value: Any, other: Any) -> NDArray[np.float64]:
        return (other.inverse() * value).to_rotvec()

    def box_plus_jacobians(
        self, value: Any, delta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        vec: NDArray[np.float64] = self.check_delta(delta)
        return SO3.exp(vec).T, SO3.right_jacobian(vec)

    def box_minus_jacobians(
        self, value: Any, other: Any
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        r: NDArray[np.float64] = self.box_minus(value, other)
        return SO3.right_jacobian_inv(r), -SO3.right_jacobian_inv(-r)

    def describe(self, value: Any) -> str:
        return "quat" + np.array2string(value.wxyz, precision=6)


class ArrayElement(ElementType):
    """Fixed-size list of values of one sub-element type."""

    def __init__(self, element: ElementType, count: int) -> None:
        if count <= 0:
            raise ElementTypeSpecError("array count must be positive")
        self._element: ElementType = element
        self._count: int = int(count)

    @property
    def element(self) -> ElementType:
        return self._element

    @property
    def count(self) -> int:
        return self._count

    @property
    def tag(self) -> str:
        return f"{self._element.tag}[{self._count}]"

    @property
    def dim(self) -> int:
        return self._element.dim * self._count

    def identity(self) -> list[Any]:
        return [self._element.identity() for _ in range(self._count)]

    def validate(self, value: Any) -> list[Any]:
        if isinstance(value, (str, bytes, Quaternion)) or not hasattr(value, "__len__"):
            raise ElementTypeMismatchError(
                f"{self.tag} element cannot hold {type(value).__name__}"
            )
        if len(value) != self._count:
            raise ElementTypeMismatchError(
                f"{self.tag} element requires {self._count} entries, got {len(value)}"
            )
        return [self._element.validate(item) for item in value]

    def copy(self, value: Any) -> list[Any]:
        return [self._element.copy(item) for item in value]

    def box_plus(self, value: Any, delta: NDArray[np.float64]) -> list[Any]:
        vec: NDArray[np.float64] = self.check_delta(delta)
        sub: int = self._element.dim
        return [
            self._element.box_plus(item, vec[i * sub : (i + 1) * sub])
            for i, item in enumerate(value)
        ]

    def box_minus(self, value: Any, other: Any) -> NDArray[np.float64]:
        return np.concatenate(
            [self._element.box_minus(a, b) for a, b in zip(value, other)]
        )

    def box_plus_jacobians(
        self, value: Any, delta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        vec: NDArray[np.float64] = self.check_delta(delta)
        sub: int = self._element.dim
        pairs: list[tuple[NDArray[np.float64], NDArray[np.float64]]] = [
            self._element.box_plus_jacobians(item, vec[i * sub : (i + 1) * sub])
            for i, item in enumerate(value)
        ]
        return (
            Linalg.block_diag(*[pair[0] for pair in pairs]),
            Linalg.block_diag(*[pair[1] for pair in pairs]),
        )

    def box_minus_jacobians(
        self, value: Any, other: Any
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        pairs: list[tuple[NDArray[np.float64], NDArray[np.float64]]] = [
            self._element.box_minus_jacobians(a, b) for a, b in zip(value, other)
        ]
        return (
            Linalg.block_diag(*[pair[0] for pair in pairs]),
            Linalg.block_diag(*[pair[1] for pair in pairs]),
        )

    def describe(self, value: Any) -> str:
        return "[" + ", ".join(self._element.describe(item) for item in value) + "]"


ElementSpec = Union[ElementType, str]

_VECTOR_TAG: re.Pattern[str] = re.compile(r"^vec(\d+)$")
_ARRAY_TAG: re.Pattern[str] = re.compile(r"^(.+)\[(\d+)\]$")

_REGISTRY: dict[str, ElementType] = {
    "scalar": ScalarElement(),
    "quat": QuaternionElement(),
}


def register_element_type(element_type: ElementType) -> None:
    """Register an element type under its tag.

    Registering a different type under an existing tag is an error.
    """
    existing: Optional[ElementType] = _REGISTRY.get(element_type.tag)
    if existing is not None and existing != element_type:
        raise ElementTypeSpecError(f"tag {element_type.tag!r} is already registered")
    _REGISTRY[element_type.tag] = element_type


def resolve_element_type(spec: ElementSpec) -> ElementType:
    """Return the element type for an instance or a registry tag.

    Besides registered tags, ``vecN`` resolves to an N-vector and ``tag[K]``
    to an array of K elements of ``tag``.
    """
    if isinstance(spec, ElementType):
        return spec
    if not isinstance(spec, str):
        raise ElementTypeSpecError(f"invalid element type spec: {spec!r}")
    tag: str = spec.strip()
    registered: Optional[ElementType] = _REGISTRY.get(tag)
    if registered is not None:
        return registered
    array_match: Optional[re.Match[str]] = _ARRAY_TAG.match(tag)
    if array_match is not None:
        return ArrayElement(
            resolve_element_type(array_match.group(1)), int(array_match.group(2))
        )
    vector_match: Optional[re.Match[str]] = _VECTOR_TAG.match(tag)
    if vector_match is not None:
        return VectorElement(int(vector_match.group(1)))
    raise ElementTypeSpecError(f"unknown element type tag: {tag!r}")
