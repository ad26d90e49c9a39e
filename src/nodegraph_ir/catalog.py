"""Structural node types: implicit converters and pass nodes.

Converters are ordinary node types that a graph instantiates when a link
joins sockets of different types. Pass nodes are identity nodes that
upstream tooling inserts and that finalize removes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .schema import NodeTypeRegistry
from .typedesc import BASE_TYPES, TypeDesc


@dataclass(frozen=True)
class ConverterSpec:
    """How to instantiate a converter node for one (source, target) pair.

    The source output is linked into every socket listed in ``inputs``;
    ``output`` becomes the effective source of the converted link.
    """

    node_type: str
    inputs: Tuple[str, ...]
    output: str
    source_type: str
    target_type: str


def _spec(node_type: str, source: str, target: str, inputs: Tuple[str, ...] = ("value",)) -> ConverterSpec:
    return ConverterSpec(node_type, inputs, "value", source, target)


# Conversions keyed by source base type, then target base type
CONVERSIONS: Dict[str, Dict[str, ConverterSpec]] = {
    "FLOAT": {
        "FLOAT3": _spec("SET_FLOAT3", "FLOAT", "FLOAT3", ("x", "y", "z")),
        "FLOAT4": _spec("SET_FLOAT4", "FLOAT", "FLOAT4", ("x", "y", "z", "w")),
        "INT": _spec("FLOAT_TO_INT", "FLOAT", "INT"),
    },
    "FLOAT3": {
        "FLOAT": _spec("FLOAT3_TO_FLOAT", "FLOAT3", "FLOAT"),
        "FLOAT4": _spec("FLOAT3_TO_FLOAT4", "FLOAT3", "FLOAT4"),
    },
    "FLOAT4": {
        "FLOAT": _spec("FLOAT4_TO_FLOAT", "FLOAT4", "FLOAT"),
        "FLOAT3": _spec("FLOAT4_TO_FLOAT3", "FLOAT4", "FLOAT3"),
    },
    "INT": {
        "FLOAT": _spec("INT_TO_FLOAT", "INT", "FLOAT"),
    },
    "MATRIX44": {},
}


def find_converter(source: TypeDesc, target: TypeDesc) -> Optional[ConverterSpec]:
    """Select the converter for a pair of types.

    Only single-element types convert; arrays never do.

    Returns:
        Converter spec, or None if no conversion exists
    """
    if source.is_array or target.is_array:
        return None
    return CONVERSIONS.get(source.base_type, {}).get(target.base_type)


def pass_type_name(base_type: str) -> str:
    return f"PASS_{base_type}"


def register_converter_types(registry: NodeTypeRegistry) -> int:
    """Register the node type of every converter in ``CONVERSIONS``.

    Types that are already registered are left alone.

    Returns:
        Number of node types added
    """
    added = 0
    for targets in CONVERSIONS.values():
        for spec in targets.values():
            if spec.node_type in registry:
                continue
            node_type = registry.add_node_type(spec.node_type)
            for name in spec.inputs:
                node_type.add_input(name, spec.source_type)
            node_type.add_output(spec.output, spec.target_type)
            added += 1
    return added


def register_pass_types(registry: NodeTypeRegistry) -> int:
    """Register a ``PASS_<TYPE>`` identity node for every base type.

    Returns:
        Number of node types added
    """
    added = 0
    for base_type in BASE_TYPES:
        name = pass_type_name(base_type)
        if name in registry:
            continue
        node_type = registry.add_node_type(name, is_pass=True)
        node_type.add_input("value", base_type)
        node_type.add_output("value", base_type)
        added += 1
    return added


def register_builtin_types(registry: NodeTypeRegistry) -> int:
    """Register converter and pass node types."""
    return register_converter_types(registry) + register_pass_types(registry)
