"""Type descriptors and typed constant values for the node-graph IR.

A ``TypeDesc`` names the type carried by a socket; two sockets can be linked
directly only when their descriptors compare equal. A ``Value`` is an
immutable typed payload built from an untyped literal.
"""

from __future__ import annotations

import copy
import numbers
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Tuple, Union, get_args

# Base types understood by the virtual machine
BaseType = Literal[
    # Numeric
    "FLOAT",
    "FLOAT3",
    "FLOAT4",
    "INT",
    "MATRIX44",

    # Opaque and reference types
    "STRING",
    "POINTER",
    "MESH",
]

BufferType = Literal["SINGLE", "ARRAY"]

BASE_TYPES: Tuple[str, ...] = get_args(BaseType)
BUFFER_TYPES: Tuple[str, ...] = get_args(BufferType)

# Number of float components for fixed-size numeric types
_COMPONENTS = {
    "FLOAT3": 3,
    "FLOAT4": 4,
}

_OPAQUE = ("POINTER", "MESH")

_ZERO_MATRIX = tuple(tuple(0.0 for _ in range(4)) for _ in range(4))

_DEFAULTS: Dict[str, Any] = {
    "FLOAT": 0.0,
    "FLOAT3": (0.0, 0.0, 0.0),
    "FLOAT4": (0.0, 0.0, 0.0, 0.0),
    "INT": 0,
    "MATRIX44": _ZERO_MATRIX,
    "STRING": "",
    "POINTER": None,
    "MESH": None,
}


@dataclass(frozen=True)
class TypeDesc:
    """Describes the type of a socket value."""

    base_type: BaseType
    buffer_type: BufferType = "SINGLE"

    def __post_init__(self) -> None:
        if self.base_type not in BASE_TYPES:
            raise ValueError(f"Unknown base type: {self.base_type}")
        if self.buffer_type not in BUFFER_TYPES:
            raise ValueError(f"Unknown buffer type: {self.buffer_type}")

    @property
    def is_array(self) -> bool:
        return self.buffer_type == "ARRAY"

    @property
    def element(self) -> TypeDesc:
        """Single-element descriptor of the same base type."""
        return TypeDesc(self.base_type)

    @classmethod
    def parse(cls, spec: Union[str, TypeDesc]) -> TypeDesc:
        """Build a descriptor from ``"FLOAT3"`` or ``"FLOAT3[]"`` notation.

        Args:
            spec: Type name, optionally suffixed with ``[]`` for arrays,
                or an existing descriptor which is returned unchanged

        Returns:
            Parsed descriptor

        Raises:
            ValueError: If the base type is unknown
        """
        if isinstance(spec, TypeDesc):
            return spec
        name = spec.strip().upper()
        if name.endswith("[]"):
            return cls(name[:-2], "ARRAY")
        return cls(name)

    def __str__(self) -> str:
        return f"{self.base_type}[]" if self.is_array else self.base_type


TypeSpec = Union[str, TypeDesc]


def _is_number(literal: Any) -> bool:
    return isinstance(literal, numbers.Real) and not isinstance(literal, bool)


def _float_tuple(literal: Any, size: int) -> Optional[Tuple[float, ...]]:
    if isinstance(literal, (str, bytes)):
        return None
    try:
        items = tuple(literal)
    except TypeError:
        return None
    if len(items) != size or not all(_is_number(item) for item in items):
        return None
    return tuple(float(item) for item in items)


def _coerce_matrix(literal: Any) -> Optional[Tuple[Tuple[float, ...], ...]]:
    if isinstance(literal, (str, bytes)):
        return None
    try:
        items = tuple(literal)
    except TypeError:
        return None

    if len(items) == 16:
        flat = _float_tuple(items, 16)
        if flat is None:
            return None
        return tuple(flat[row * 4:row * 4 + 4] for row in range(4))

    if len(items) == 4:
        rows = tuple(_float_tuple(row, 4) for row in items)
        if any(row is None for row in rows):
            return None
        return rows

    return None


def _coerce_single(base_type: str, literal: Any) -> Tuple[bool, Any]:
    """Normalize a literal for a single-element type.

    Returns:
        Tuple of (ok, normalized payload)
    """
    if base_type == "FLOAT":
        if _is_number(literal):
            return True, float(literal)
        return False, None

    if base_type in _COMPONENTS:
        data = _float_tuple(literal, _COMPONENTS[base_type])
        return data is not None, data

    if base_type == "INT":
        if isinstance(literal, numbers.Integral) and not isinstance(literal, bool):
            return True, int(literal)
        return False, None

    if base_type == "MATRIX44":
        data = _coerce_matrix(literal)
        return data is not None, data

    if base_type == "STRING":
        if isinstance(literal, str):
            return True, literal
        return False, None

    # POINTER and MESH are opaque host references
    return True, literal


@dataclass(frozen=True)
class Value:
    """Immutable typed constant."""

    typedesc: TypeDesc
    data: Any

    @classmethod
    def create(cls, type: TypeSpec, literal: Any) -> Optional[Value]:
        """Build a typed constant from an untyped literal.

        Args:
            type: Target type descriptor or type name
            literal: Python literal (number, sequence, string, host object)

        Returns:
            The constant, or None if the literal cannot represent the type
        """
        try:
            typedesc = TypeDesc.parse(type)
        except ValueError:
            return None

        if isinstance(literal, Value):
            return literal.copy() if literal.typedesc == typedesc else None

        if not typedesc.is_array:
            ok, data = _coerce_single(typedesc.base_type, literal)
            return cls(typedesc, data) if ok else None

        if isinstance(literal, (str, bytes)):
            return None
        try:
            items = list(literal)
        except TypeError:
            return None

        elements = []
        for item in items:
            ok, data = _coerce_single(typedesc.base_type, item)
            if not ok:
                return None
            elements.append(data)
        return cls(typedesc, tuple(elements))

    @classmethod
    def default(cls, type: TypeSpec) -> Value:
        """Zero value for a type."""
        typedesc = TypeDesc.parse(type)
        if typedesc.is_array:
            return cls(typedesc, ())
        return cls(typedesc, _DEFAULTS[typedesc.base_type])

    def copy(self) -> Value:
        """Independent copy owned by a new binding site."""
        if self.typedesc.base_type in _OPAQUE:
            # host references are copied as references
            return Value(self.typedesc, self.data)
        return Value(self.typedesc, copy.deepcopy(self.data))

    def __str__(self) -> str:
        return f"{self.typedesc}({self.data!r})"
