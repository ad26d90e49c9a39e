"""Node type declarations and the node type registry.

This module defines the catalog side of the node-graph IR: sockets, the node
types that own them, and the registry that maps type names to types. It also
holds the exception classes shared by the package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Union

import structlog

from .typedesc import TypeDesc, TypeSpec, Value

logger = structlog.get_logger(__name__)

# How an input socket obtains its value at evaluation time
ValueCategory = Literal["CONSTANT", "VARIABLE", "FUNCTION"]

VALUE_CATEGORIES = ("CONSTANT", "VARIABLE", "FUNCTION")


class NodeGraphError(Exception):
    """Base class for node-graph IR errors."""
    pass


class DuplicateNodeTypeError(NodeGraphError, ValueError):
    """Raised when a node type name is registered twice."""
    pass


class GraphStateError(NodeGraphError):
    """Raised when a graph is mutated outside of its build stage."""
    pass


class StructuralError(NodeGraphError):
    """Raised by finalize when the graph structure cannot be compiled.

    Attributes:
        path: Names of the nodes or ports along the offending path
    """

    def __init__(self, message: str, path: Sequence[str] = ()):
        self.path = list(path)
        if self.path:
            message = f"{message}: {' -> '.join(self.path)}"
        super().__init__(message)


@dataclass
class NodeSocket:
    """Named, typed input or output slot of a node type."""

    name: str
    typedesc: TypeDesc
    default_value: Value
    value_type: ValueCategory = "VARIABLE"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Socket name cannot be empty")
        if self.value_type not in VALUE_CATEGORIES:
            raise ValueError(f"Unknown value category: {self.value_type}")
        if self.default_value.typedesc != self.typedesc:
            raise ValueError(
                f"Default value type {self.default_value.typedesc} does not match "
                f"socket type {self.typedesc}"
            )


# A socket can be addressed by name, position, or an already resolved socket
SocketKey = Union[str, int, NodeSocket]


def find_socket(
    sockets: List[NodeSocket],
    index: Dict[str, int],
    key: SocketKey,
) -> Optional[NodeSocket]:
    """Resolve a socket key against one socket list.

    Args:
        sockets: Ordered socket list
        index: Mapping of socket name to position in ``sockets``
        key: Socket name, position, or socket object

    Returns:
        The matching socket, or None if the key does not address one
    """
    if isinstance(key, NodeSocket):
        # identity check, the socket must belong to this list
        pos = index.get(key.name)
        if pos is not None and sockets[pos] is key:
            return key
        return None

    if isinstance(key, bool):
        return None

    if isinstance(key, int):
        if 0 <= key < len(sockets):
            return sockets[key]
        return None

    if isinstance(key, str):
        pos = index.get(key)
        return sockets[pos] if pos is not None else None

    return None


def _make_default(name: str, typedesc: TypeDesc, default: Any) -> Value:
    if default is None:
        return Value.default(typedesc)
    value = Value.create(typedesc, default)
    if value is None:
        raise ValueError(f"Default for socket {name!r} cannot be represented as {typedesc}")
    return value


@dataclass(eq=False)
class NodeType:
    """Catalog entry declaring the input and output sockets of a node kind."""

    name: str
    is_pass: bool = False
    inputs: List[NodeSocket] = field(default_factory=list)
    outputs: List[NodeSocket] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Node type name cannot be empty")
        self._input_index = {socket.name: i for i, socket in enumerate(self.inputs)}
        self._output_index = {socket.name: i for i, socket in enumerate(self.outputs)}
        if len(self._input_index) != len(self.inputs):
            raise ValueError(f"Duplicate input socket names in node type {self.name}")
        if len(self._output_index) != len(self.outputs):
            raise ValueError(f"Duplicate output socket names in node type {self.name}")

    def find_input(self, key: SocketKey) -> Optional[NodeSocket]:
        """Look up an input socket by name, index or socket object."""
        return find_socket(self.inputs, self._input_index, key)

    def find_output(self, key: SocketKey) -> Optional[NodeSocket]:
        """Look up an output socket by name, index or socket object."""
        return find_socket(self.outputs, self._output_index, key)

    def add_input(
        self,
        name: str,
        type: TypeSpec,
        default: Any = None,
        value_type: ValueCategory = "VARIABLE",
    ) -> NodeSocket:
        """Append an input socket.

        Args:
            name: Socket name, unique among this type's inputs
            type: Socket type descriptor or type name
            default: Default literal or Value; None uses the type's zero value
            value_type: Value category of the socket

        Returns:
            The new socket

        Raises:
            ValueError: If the name is taken or the default is not representable
        """
        if name in self._input_index:
            raise ValueError(f"Input socket {name!r} already exists on node type {self.name}")
        typedesc = TypeDesc.parse(type)
        socket = NodeSocket(name, typedesc, _make_default(name, typedesc, default), value_type)
        self._input_index[name] = len(self.inputs)
        self.inputs.append(socket)
        return socket

    def add_output(self, name: str, type: TypeSpec, default: Any = None) -> NodeSocket:
        """Append an output socket.

        Raises:
            ValueError: If the name is taken or the default is not representable
        """
        if name in self._output_index:
            raise ValueError(f"Output socket {name!r} already exists on node type {self.name}")
        typedesc = TypeDesc.parse(type)
        socket = NodeSocket(name, typedesc, _make_default(name, typedesc, default))
        self._output_index[name] = len(self.outputs)
        self.outputs.append(socket)
        return socket


class NodeTypeRegistry:
    """Registry of node types shared by the graphs of one compile session."""

    def __init__(self) -> None:
        self._types: Dict[str, NodeType] = {}

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def find_node_type(self, name: str) -> Optional[NodeType]:
        """Retrieve a node type by name, None if it is not registered."""
        return self._types.get(name)

    def add_node_type(self, name: str, is_pass: bool = False) -> NodeType:
        """Register a new, empty node type.

        Raises:
            DuplicateNodeTypeError: If a node type with this name exists
        """
        if name in self._types:
            raise DuplicateNodeTypeError(f"Node type {name} is already registered")
        node_type = NodeType(name, is_pass=is_pass)
        self._types[name] = node_type
        logger.debug("Registered node type", node_type=name, is_pass=is_pass)
        return node_type

    def remove_node_type(self, name: str) -> bool:
        """Remove a node type.

        Graphs that still hold instances of the type keep their reference,
        but new instances can no longer be created.

        Returns:
            True if the type was registered
        """
        if self._types.pop(name, None) is None:
            return False
        logger.debug("Removed node type", node_type=name)
        return True

    def clear(self) -> None:
        """Remove all node types."""
        self._types.clear()
