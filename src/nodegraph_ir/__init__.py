"""Node-graph intermediate representation.

This package provides typed node declarations, graph construction with
implicit type conversion, the finalize pipeline that prepares a graph for
code generation, and read-only diagnostics.
"""

from .catalog import CONVERSIONS, ConverterSpec, find_converter, register_builtin_types
from .graph import NodeGraph, NodeGraphInput, NodeGraphOutput
from .instance import ExternBinding, LinkBinding, NodeInstance, SocketRef, ValueBinding
from .schema import (
    DuplicateNodeTypeError,
    GraphStateError,
    NodeGraphError,
    NodeSocket,
    NodeType,
    NodeTypeRegistry,
    StructuralError,
)
from .serialize import dump, dump_graphviz, to_json_dict, to_json_string
from .typedesc import TypeDesc, Value

__version__ = "0.1.0"
__all__ = [
    "TypeDesc", "Value",
    "NodeSocket", "NodeType", "NodeTypeRegistry",
    "NodeGraphError", "DuplicateNodeTypeError", "GraphStateError", "StructuralError",
    "NodeInstance", "ExternBinding", "LinkBinding", "ValueBinding", "SocketRef",
    "NodeGraph", "NodeGraphInput", "NodeGraphOutput",
    "CONVERSIONS", "ConverterSpec", "find_converter", "register_builtin_types",
    "dump", "dump_graphviz", "to_json_dict", "to_json_string",
]
