################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Named, schema-backed containers of manifold elements."""

from __future__ import annotations

from typing import Any
from typing import Iterable
from typing import Iterator
from typing import Mapping
from typing import Optional
from typing import Union

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.elements.element_types import ElementSpec
from oasis_estimation.elements.element_types import ElementType
from oasis_estimation.elements.element_types import ElementTypeMismatchError
from oasis_estimation.elements.element_types import resolve_element_type


class DefinitionError(Exception):
    """Raised when an element vector definition is malformed."""


class ElementNotFoundError(Exception):
    """Raised when a name is absent from an element vector definition."""


class ElementVectorDefinition:
    """Immutable ordered mapping from element name to element type.

    The order fixes the tangent layout: element ``i`` occupies the tangent
    slice that starts after the dimensions of elements ``0..i-1``. Building
    operations return new definitions and never modify this one.
    """

    def __init__(self, elements: Iterable[tuple[str, ElementSpec]] = ()) -> None:
        names: list[str] = []
        types: dict[str, ElementType] = {}
        offsets: dict[str, int] = {}
        offset: int = 0
        for name, spec in elements:
            if not isinstance(name, str) or not name:
                raise DefinitionError("element names must be non-empty strings")
            if name in types:
                raise DefinitionError(f"duplicate element name: {name!r}")
            element_type: ElementType = resolve_element_type(spec)
            names.append(name)
            types[name] = element_type
            offsets[name] = offset
            offset += element_type.dim

        self._names: tuple[str, ...] = tuple(names)
        self._types: dict[str, ElementType] = types
        self._offsets: dict[str, int] = offsets
        self._dim: int = offset

    def with_element(self, name: str, spec: ElementSpec) -> ElementVectorDefinition:
        """Return a new definition with one element appended."""
        return ElementVectorDefinition(list(self.items()) + [(name, spec)])

    def merged(self, other: ElementVectorDefinition) -> ElementVectorDefinition:
        """Return the union of two definitions, de-duplicated by name.

        Elements of ``other`` that are not yet present are appended in their
        order. A shared name with different types raises
        ElementTypeMismatchError.
        """
        items: list[tuple[str, ElementSpec]] = list(self.items())
        for name, element_type in other.items():
            existing: Optional[ElementType] = self._types.get(name)
            if existing is None:
                items.append((name, element_type))
            elif existing != element_type:
                raise ElementTypeMismatchError(
                    f"element {name!r} is declared as both {existing.tag} "
                    f"and {element_type.tag}"
                )
        return ElementVectorDefinition(items)

    def dim(self) -> int:
        """Return the total tangent dimension."""
        return self._dim

    def names(self) -> tuple[str, ...]:
        return self._names

    def items(self) -> Iterator[tuple[str, ElementType]]:
        for name in self._names:
            yield name, self._types[name]

    def element_type(self, name: str) -> ElementType:
        """Return the element type declared for a name."""
        self._require(name)
        return self._types[name]

    def index_of(self, name: str) -> int:
        """Return the position of a name in the definition."""
        self._require(name)
        return self._names.index(name)

    def offset(self, name: str) -> int:
        """Return the first tangent coordinate of an element."""
        self._require(name)
        return self._offsets[name]

    def tangent_slice(self, name: str) -> slice:
        """Return the tangent slice occupied by an element."""
        start: int = self.offset(name)
        return slice(start, start + self._types[name].dim)

    def describe(self) -> str:
        lines: list[str] = [f"ElementVectorDefinition(dim={self._dim})"]
        for name, element_type in self.items():
            span: slice = self.tangent_slice(name)
            lines.append(f"  {name}: {element_type.tag} [{span.start}:{span.stop}]")
        return "\n".join(lines)

    def _require(self, name: str) -> None:
        if name not in self._types:
            raise ElementNotFoundError(f"no element named {name!r}")

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ElementVectorDefinition):
            return NotImplemented
        return list(self.items()) == list(other.items())

    def __hash__(self) -> int:
        return hash(tuple((name, t.tag) for name, t in self.items()))

    def __repr__(self) -> str:
        body: str = ", ".join(f"{name}: {t.tag}" for name, t in self.items())
        return f"ElementVectorDefinition({body})"


ExpectedType = Union[ElementSpec, type]


class ElementVector:
    """One value per element of a definition.

    Values returned by ``get`` are the stored objects. Mutating a numpy array
    in place is visible to every holder of the vector.
    """

    def __init__(
        self,
        definition: ElementVectorDefinition,
        values: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._definition: ElementVectorDefinition = definition
        self._values: dict[str, Any] = {}
        self.set_identity()
        if values is not None:
            for name, value in values.items():
                self.set(name, value)

    @classmethod
    def from_values(
        cls, definition: ElementVectorDefinition, /, **values: Any
    ) -> ElementVector:
        """Create a vector, filling unspecified elements with identity."""
        return cls(definition, values)

    @property
    def definition(self) -> ElementVectorDefinition:
        return self._definition

    def dim(self) -> int:
        return self._definition.dim()

    def get(self, name: str, expected: Optional[ExpectedType] = None) -> Any:
        """Return the stored value of an element.

        Args:
            name: Element name
            expected: Optional element type, tag or element type class the
                caller assumes for this element

        Raises:
            ElementNotFoundError: The name is not in the definition
            ElementTypeMismatchError: The declared type differs from expected
        """
        element_type: ElementType = self._definition.element_type(name)
        if expected is not None and not _type_matches(element_type, expected):
            raise ElementTypeMismatchError(
                f"element {name!r} is {element_type.tag}, "
                f"not {_expected_name(expected)}"
            )
        return self._values[name]

    def set(self, name: str, value: Any) -> None:
        """Store a value after validating it against the declared type."""
        element_type: ElementType = self._definition.element_type(name)
        self._values[name] = element_type.validate(value)

    def set_identity(self) -> None:
        for name, element_type in self._definition.items():
            self._values[name] = element_type.identity()

    def box_plus(
        self, delta: NDArray[np.float64], out: Optional[ElementVector] = None
    ) -> ElementVector:
        """Return ``self [+] delta``, writing into ``out`` when given."""
        vec: NDArray[np.float64] = np.asarray(delta, dtype=float).reshape(-1)
        if vec.shape != (self._definition.dim(),):
            raise DefinitionError(
                f"delta has dimension {vec.shape[0]}, "
                f"expected {self._definition.dim()}"
            )
        target: ElementVector = ElementVector(self._definition) if out is None else out
        if target.definition != self._definition:
            raise DefinitionError("output vector uses a different definition")
        updated: dict[str, Any] = {}
        for name, element_type in self._definition.items():
            updated[name] = element_type.box_plus(
                self._values[name], vec[self._definition.tangent_slice(name)]
            )
        target._values.update(updated)
        return target

    def box_minus(self, other: ElementVector) -> NDArray[np.float64]:
        """Return the concatenated tangent ``self [-] other``."""
        if other.definition != self._definition:
            raise DefinitionError("box_minus requires vectors of one definition")
        result: NDArray[np.float64] = np.zeros(self._definition.dim(), dtype=float)
        for name, element_type in self._definition.items():
            result[self._definition.tangent_slice(name)] = element_type.box_minus(
                self._values[name], other._values[name]
            )
        return result

    def to_tangent(self) -> NDArray[np.float64]:
        """Return ``self [-] identity``; for flat elements this is the value."""
        return self.box_minus(ElementVector(self._definition))

    def box_plus_jacobian(self, delta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the Jacobian of ``self [+] delta`` with respect to delta."""
        vec: NDArray[np.float64] = np.asarray(delta, dtype=float).reshape(-1)
        dim: int = self._definition.dim()
        J: NDArray[np.float64] = np.zeros((dim, dim), dtype=float)
        for name, element_type in self._definition.items():
            span: slice = self._definition.tangent_slice(name)
            J[span, span] = element_type.box_plus_jacobians(
                self._values[name], vec[span]
            )[1]
        return J

    def box_minus_jacobians(
        self, other: ElementVector
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return the Jacobians of ``self [-] other`` w.r.t. self and other."""
        if other.definition != self._definition:
            raise DefinitionError("box_minus requires vectors of one definition")
        dim: int = self._definition.dim()
        J_self: NDArray[np.float64] = np.zeros((dim, dim), dtype=float)
        J_other: NDArray[np.float64] = np.zeros((dim, dim), dtype=float)
        for name, element_type in self._definition.items():
            span: slice = self._definition.tangent_slice(name)
            J_self[span, span], J_other[span, span] = element_type.box_minus_jacobians(
                self._values[name], other._values[name]
            )
        return J_self, J_other

    def copy(self) -> ElementVector:
        """Return a deep copy sharing only the definition."""
        result: ElementVector = ElementVector(self._definition)
        for name, element_type in self._definition.items():
            result._values[name] = element_type.copy(self._values[name])
        return result

    def project_from(self, other: ElementVector) -> None:
        """Copy the values of every element both vectors declare.

        Shared names must have the same element type.
        """
        for name, element_type in self._definition.items():
            if name not in other.definition:
                continue
            if other.definition.element_type(name) != element_type:
                raise ElementTypeMismatchError(
                    f"element {name!r} differs between definitions"
                )
            self._values[name] = element_type.copy(other._values[name])

    def describe(self) -> str:
        """Return a diagnostic dump of all elements."""
        lines: list[str] = []
        for name, element_type in self._definition.items():
            lines.append(
                f"{name} ({element_type.tag}): "
                f"{element_type.describe(self._values[name])}"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ElementVector({', '.join(self._definition.names())})"


def _type_matches(element_type: ElementType, expected: ExpectedType) -> bool:
    if isinstance(expected, type):
        return isinstance(element_type, expected)
    return element_type == resolve_element_type(expected)


def _expected_name(expected: ExpectedType) -> str:
    if isinstance(expected, type):
        return expected.__name__
    if isinstance(expected, ElementType):
        return expected.tag
    return str(expected)
