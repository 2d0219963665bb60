################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Manifold elements and schema-backed element vectors."""

from __future__ import annotations

from oasis_estimation.elements.element_types import ArrayElement
from oasis_estimation.elements.element_types import ElementDimensionError
from oasis_estimation.elements.element_types import ElementType
from oasis_estimation.elements.element_types import ElementTypeMismatchError
from oasis_estimation.elements.element_types import ElementTypeSpecError
from oasis_estimation.elements.element_types import QuaternionElement
from oasis_estimation.elements.element_types import ScalarElement
from oasis_estimation.elements.element_types import VectorElement
from oasis_estimation.elements.element_types import register_element_type
from oasis_estimation.elements.element_types import resolve_element_type
from oasis_estimation.elements.element_vector import DefinitionError
from oasis_estimation.elements.element_vector import ElementNotFoundError
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition


__all__ = [
    "ArrayElement",
    "DefinitionError",
    "ElementDimensionError",
    "ElementNotFoundError",
    "ElementType",
    "ElementTypeMismatchError",
    "ElementTypeSpecError",
    "ElementVector",
    "ElementVectorDefinition",
    "QuaternionElement",
    "ScalarElement",
    "VectorElement",
    "register_element_type",
    "resolve_element_type",
]
