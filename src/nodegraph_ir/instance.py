"""Node instances and their input bindings.

Each input of a node instance is bound to exactly one source: an external
graph input, a link from another instance's output, or a constant value.
Instances refer to each other through integer handles owned by the graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import structlog

from .schema import NodeSocket, NodeType, SocketKey
from .typedesc import Value

if TYPE_CHECKING:
    from .graph import NodeGraph, NodeGraphInput

logger = structlog.get_logger(__name__)

# Stable handle of an instance within its owning graph
NodeHandle = int


@dataclass(frozen=True)
class ExternBinding:
    """Input bound to a named graph input."""

    input_name: str


@dataclass(frozen=True)
class LinkBinding:
    """Input bound to an output socket of another instance."""

    node_id: NodeHandle
    socket: str


@dataclass(frozen=True)
class ValueBinding:
    """Input bound to a constant owned by the binding."""

    value: Value


Binding = Union[ExternBinding, LinkBinding, ValueBinding]


@dataclass(frozen=True)
class SocketRef:
    """Reference to one socket of one instance."""

    node_id: NodeHandle
    socket: str


@dataclass(eq=False)
class NodeInstance:
    """A node type materialized inside a graph."""

    id: NodeHandle
    name: str
    type: NodeType
    inputs: Dict[str, Binding] = field(default_factory=dict)
    outputs: Dict[str, Optional[Value]] = field(default_factory=dict)
    owner: Optional[NodeGraph] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for socket in self.type.inputs:
            self.inputs.setdefault(socket.name, ValueBinding(socket.default_value.copy()))
        for socket in self.type.outputs:
            self.outputs.setdefault(socket.name, None)

    @property
    def num_inputs(self) -> int:
        return len(self.type.inputs)

    @property
    def num_outputs(self) -> int:
        return len(self.type.outputs)

    def input(self, key: SocketKey) -> Optional[SocketRef]:
        socket = self.type.find_input(key)
        return SocketRef(self.id, socket.name) if socket else None

    def output(self, key: SocketKey) -> Optional[SocketRef]:
        socket = self.type.find_output(key)
        return SocketRef(self.id, socket.name) if socket else None

    # -- bindings ----------------------------------------------------------

    def _slot(self, socket: NodeSocket) -> Binding:
        # sockets appended to the type after instantiation read as their default
        binding = self.inputs.get(socket.name)
        return binding if binding is not None else ValueBinding(socket.default_value.copy())

    def input_binding(self, key: SocketKey) -> Optional[Binding]:
        """Current binding of an input, None if the socket is unknown."""
        socket = self.type.find_input(key)
        return self._slot(socket) if socket else None

    def input_link(self, key: SocketKey) -> Optional[LinkBinding]:
        binding = self.input_binding(key)
        return binding if isinstance(binding, LinkBinding) else None

    def input_extern(self, key: SocketKey) -> Optional[str]:
        binding = self.input_binding(key)
        return binding.input_name if isinstance(binding, ExternBinding) else None

    def input_value(self, key: SocketKey) -> Optional[Value]:
        binding = self.input_binding(key)
        return binding.value if isinstance(binding, ValueBinding) else None

    def has_input_link(self, key: SocketKey) -> bool:
        return self.input_link(key) is not None

    def has_input_extern(self, key: SocketKey) -> bool:
        return self.input_extern(key) is not None

    def has_input_value(self, key: SocketKey) -> bool:
        return self.input_value(key) is not None

    def is_input_constant(self, key: SocketKey) -> bool:
        """Whether the input socket is declared as a compile-time constant."""
        socket = self.type.find_input(key)
        return socket is not None and socket.value_type == "CONSTANT"

    def set_input_value(self, key: SocketKey, value: Any) -> bool:
        """Bind an input to a constant, replacing any previous binding.

        Args:
            key: Input socket name, index or socket
            value: Value of the socket's type, or a literal converted to it

        Returns:
            False if the socket is unknown or the value does not fit its type
        """
        socket = self.type.find_input(key)
        if socket is None:
            logger.debug("Unknown input socket", node=self.name, socket=key)
            return False
        constant = Value.create(socket.typedesc, value)
        if constant is None:
            logger.debug("Value does not match input type", node=self.name,
                         socket=socket.name, type=str(socket.typedesc))
            return False
        self.inputs[socket.name] = ValueBinding(constant)
        return True

    def set_input_link(self, key: SocketKey, from_node: Optional[NodeInstance], from_socket: SocketKey) -> bool:
        """Bind an input to an output of another instance.

        The output type must equal the input type; use ``NodeGraph.add_link``
        for automatic conversion.

        Returns:
            False if the source instance belongs to no graph or another graph,
            either socket is unknown or the types differ
        """
        if from_node is None or from_node.owner is not self.owner:
            logger.debug("Link source not in this graph", node=self.name, socket=key)
            return False
        socket = self.type.find_input(key)
        source = from_node.type.find_output(from_socket)
        if socket is None or source is None:
            logger.debug("Unknown link socket", node=self.name, socket=key,
                         from_node=from_node.name, from_socket=from_socket)
            return False
        if source.typedesc != socket.typedesc:
            logger.debug("Link type mismatch", node=self.name, socket=socket.name,
                         from_type=str(source.typedesc), to_type=str(socket.typedesc))
            return False
        self.inputs[socket.name] = LinkBinding(from_node.id, source.name)
        return True

    def set_input_extern(self, key: SocketKey, graph_input: Optional[NodeGraphInput]) -> bool:
        """Bind an input to a graph input of the same type."""
        if graph_input is None:
            logger.debug("Missing graph input", node=self.name, socket=key)
            return False
        socket = self.type.find_input(key)
        if socket is None or graph_input.typedesc != socket.typedesc:
            logger.debug("Cannot bind graph input", node=self.name, socket=key,
                         graph_input=graph_input.name)
            return False
        self.inputs[socket.name] = ExternBinding(graph_input.name)
        return True

    # -- outputs -----------------------------------------------------------

    def output_value(self, key: SocketKey) -> Optional[Value]:
        socket = self.type.find_output(key)
        return self.outputs.get(socket.name) if socket else None

    def has_output_value(self, key: SocketKey) -> bool:
        return self.output_value(key) is not None

    def set_output_value(self, key: SocketKey, value: Any) -> bool:
        """Fill the value placeholder of an output socket."""
        socket = self.type.find_output(key)
        if socket is None:
            return False
        constant = Value.create(socket.typedesc, value)
        if constant is None:
            return False
        self.outputs[socket.name] = constant
        return True
