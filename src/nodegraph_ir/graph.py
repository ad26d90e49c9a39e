"""Node graph construction and the finalize pipeline.

A ``NodeGraph`` owns its node instances and its external input/output ports.
Graphs are built incrementally with local checks only; ``finalize`` then
rewrites the graph once into the form consumed by code generation:

1. links through pass nodes are rewired to the ultimate non-pass source,
2. instances unreachable from any graph output are removed,
3. every surviving binding is checked for dangling handles and type mismatches.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Literal, Optional, Set, Tuple, Union

import structlog

from .catalog import ConverterSpec, find_converter
from .instance import (
    Binding,
    ExternBinding,
    LinkBinding,
    NodeHandle,
    NodeInstance,
    SocketRef,
    ValueBinding,
)
from .schema import (
    GraphStateError,
    NodeSocket,
    NodeTypeRegistry,
    SocketKey,
    StructuralError,
)
from .typedesc import TypeDesc, TypeSpec, Value

logger = structlog.get_logger(__name__)

GraphState = Literal["BUILD", "REWRITING", "FINALIZED", "FAILED"]

# Instances can be addressed by object, handle or name
NodeRef = Union[NodeInstance, NodeHandle, str]


@dataclass
class NodeGraphInput:
    """Named external input port of a graph."""

    name: str
    typedesc: TypeDesc
    value: Optional[Value] = None


@dataclass
class NodeGraphOutput:
    """Named external output port of a graph."""

    name: str
    typedesc: TypeDesc
    default_value: Value
    link: Optional[LinkBinding] = None


class NodeGraph:
    """Directed dataflow graph of typed node instances."""

    def __init__(self, registry: NodeTypeRegistry, name: str = "graph"):
        """Initialize an empty graph.

        Args:
            registry: Node type registry used to instantiate nodes
            name: Graph label used in logs and diagnostics
        """
        self.registry = registry
        self.name = name
        self.nodes: Dict[NodeHandle, NodeInstance] = {}
        self.inputs: List[NodeGraphInput] = []
        self.outputs: List[NodeGraphOutput] = []
        self.state: GraphState = "BUILD"

        self._names: Dict[str, NodeHandle] = {}
        self._name_counters: Dict[str, int] = {}
        self._next_id: NodeHandle = 0

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[NodeInstance]:
        return iter(list(self.nodes.values()))

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, (NodeInstance, int, str)):
            return self.get_node(ref) is not None
        return False

    @property
    def is_finalized(self) -> bool:
        return self.state == "FINALIZED"

    def _require_build(self, action: str) -> None:
        if self.state != "BUILD":
            raise GraphStateError(f"Cannot {action}: graph {self.name} is {self.state.lower()}")

    # -- nodes -------------------------------------------------------------

    def get_node(self, ref: NodeRef) -> Optional[NodeInstance]:
        """Retrieve an instance owned by this graph."""
        if isinstance(ref, NodeInstance):
            return ref if self.nodes.get(ref.id) is ref else None
        if isinstance(ref, bool):
            return None
        if isinstance(ref, int):
            return self.nodes.get(ref)
        if isinstance(ref, str):
            handle = self._names.get(ref)
            return self.nodes.get(handle) if handle is not None else None
        return None

    def _unique_name(self, base: str) -> str:
        counter = self._name_counters.get(base, 0)
        while True:
            counter += 1
            name = f"{base}_{counter}"
            if name not in self._names:
                self._name_counters[base] = counter
                return name

    def add_node(self, type_name: str, name: str = "") -> Optional[NodeInstance]:
        """Instantiate a registered node type.

        Args:
            type_name: Name of a registered node type
            name: Instance name, generated from the type name if empty

        Returns:
            The new instance, or None if the type is unknown or the name taken
        """
        self._require_build("add node")

        node_type = self.registry.find_node_type(type_name)
        if node_type is None:
            logger.debug("Unknown node type", graph=self.name, node_type=type_name)
            return None

        if not name:
            name = self._unique_name(type_name)
        elif name in self._names:
            logger.debug("Node name already in use", graph=self.name, node=name)
            return None

        node = NodeInstance(self._next_id, name, node_type, owner=self)
        self._next_id += 1
        self.nodes[node.id] = node
        self._names[name] = node.id
        return node

    def _remove_node(self, handle: NodeHandle) -> None:
        node = self.nodes.pop(handle)
        del self._names[node.name]
        node.owner = None

    # -- graph ports -------------------------------------------------------

    def get_input(self, key: Union[str, int]) -> Optional[NodeGraphInput]:
        return _find_port(self.inputs, key)

    def get_output(self, key: Union[str, int]) -> Optional[NodeGraphOutput]:
        return _find_port(self.outputs, key)

    def add_input(self, name: str, type: TypeSpec) -> Optional[NodeGraphInput]:
        """Declare an external input; None if the name is taken."""
        self._require_build("add input")
        if self.get_input(name) is not None:
            return None
        graph_input = NodeGraphInput(name, TypeDesc.parse(type))
        self.inputs.append(graph_input)
        return graph_input

    def add_output(self, name: str, type: TypeSpec, default: Any = None) -> Optional[NodeGraphOutput]:
        """Declare an external output.

        Returns:
            The output, or None if the name is taken or the default does not fit
        """
        self._require_build("add output")
        if self.get_output(name) is not None:
            return None
        typedesc = TypeDesc.parse(type)
        value = Value.default(typedesc) if default is None else Value.create(typedesc, default)
        if value is None:
            return None
        graph_output = NodeGraphOutput(name, typedesc, value)
        self.outputs.append(graph_output)
        return graph_output

    def set_input_argument(self, name: str, value: Any) -> bool:
        """Assign the argument value passed through a graph input."""
        self._require_build("set input argument")
        graph_input = self.get_input(name)
        if graph_input is None:
            return False
        argument = Value.create(graph_input.typedesc, value)
        if argument is None:
            return False
        graph_input.value = argument
        return True

    # -- links -------------------------------------------------------------

    def _plan_conversion(self, source: NodeSocket, target: TypeDesc) -> Optional[ConverterSpec]:
        """Check that a converter exists and is registered with matching sockets."""
        spec = find_converter(source.typedesc, target)
        if spec is None:
            return None
        node_type = self.registry.find_node_type(spec.node_type)
        if node_type is None:
            logger.debug("Converter node type not registered", graph=self.name,
                         node_type=spec.node_type)
            return None
        for name in spec.inputs:
            socket = node_type.find_input(name)
            if socket is None or socket.typedesc != source.typedesc:
                return None
        output = node_type.find_output(spec.output)
        if output is None or output.typedesc != target:
            return None
        return spec

    def _resolve_source(
        self,
        from_node: NodeInstance,
        from_socket: SocketKey,
        target: TypeDesc,
        autoconvert: bool,
    ) -> Optional[SocketRef]:
        """Find the effective source for a link, inserting a converter if needed.

        The graph is only mutated once the whole conversion is known to succeed.
        """
        source = from_node.type.find_output(from_socket)
        if source is None:
            return None
        if source.typedesc == target:
            return SocketRef(from_node.id, source.name)
        if not autoconvert:
            logger.debug("Link type mismatch without autoconvert", graph=self.name,
                         from_type=str(source.typedesc), to_type=str(target))
            return None

        spec = self._plan_conversion(source, target)
        if spec is None:
            logger.debug("No conversion available", graph=self.name,
                         from_type=str(source.typedesc), to_type=str(target))
            return None

        converter = self.add_node(spec.node_type)
        for name in spec.inputs:
            converter.set_input_link(name, from_node, source)
        logger.debug("Inserted converter", graph=self.name, node=converter.name,
                     from_node=from_node.name, from_socket=source.name)
        return converter.output(spec.output)

    def add_link(
        self,
        from_node: NodeRef,
        from_socket: SocketKey,
        to_node: NodeRef,
        to_socket: SocketKey,
        autoconvert: bool = True,
    ) -> bool:
        """Link an output socket to an input socket.

        Args:
            from_node: Producing instance (object, handle or name)
            from_socket: Output socket name, index or socket
            to_node: Consuming instance (object, handle or name)
            to_socket: Input socket name, index or socket
            autoconvert: Insert a converter node when the types differ

        Returns:
            False if a node or socket is missing or the types cannot be
            reconciled; the graph is unchanged in that case
        """
        self._require_build("add link")

        source_node = self.get_node(from_node)
        target_node = self.get_node(to_node)
        if source_node is None or target_node is None:
            return False

        target = target_node.type.find_input(to_socket)
        if target is None or source_node.type.find_output(from_socket) is None:
            return False

        ref = self._resolve_source(source_node, from_socket, target.typedesc, autoconvert)
        if ref is None:
            return False
        return target_node.set_input_link(target, self.nodes[ref.node_id], ref.socket)

    def set_output_link(
        self,
        name: str,
        node: NodeRef,
        socket: SocketKey,
        autoconvert: bool = True,
    ) -> bool:
        """Link a graph output to an instance output socket."""
        self._require_build("set output link")

        graph_output = self.get_output(name)
        source_node = self.get_node(node)
        if graph_output is None or source_node is None:
            return False

        ref = self._resolve_source(source_node, socket, graph_output.typedesc, autoconvert)
        if ref is None:
            return False
        graph_output.link = LinkBinding(ref.node_id, ref.socket)
        return True

    # -- finalize ----------------------------------------------------------

    def finalize(self) -> bool:
        """Rewrite the graph into its minimal, pass-free, type-consistent form.

        Returns:
            True once the graph is finalized

        Raises:
            GraphStateError: If the graph was already finalized or failed
            StructuralError: If the graph contains a pass-node cycle, a
                dangling link or a type-inconsistent binding; the graph is
                left in the FAILED state
        """
        self._require_build("finalize")
        self.state = "REWRITING"
        log = logger.bind(graph=self.name)
        node_count = len(self.nodes)

        try:
            skipped = self.skip_pass_nodes()
            removed = self.remove_unused_nodes()
            self.validate()
        except StructuralError as e:
            self.state = "FAILED"
            log.error("Graph finalize failed", error=str(e), path=e.path)
            raise

        self.state = "FINALIZED"
        log.info(
            "Graph finalized",
            nodes_before=node_count,
            nodes_after=len(self.nodes),
            pass_nodes=skipped,
            unused_nodes=removed,
        )
        return True

    def _require_rewritable(self, action: str) -> None:
        if self.state == "FAILED":
            raise GraphStateError(f"Cannot {action}: graph {self.name} is failed")

    def _resolve_link(
        self,
        binding: LinkBinding,
        origin: str,
        resolved: Dict[NodeHandle, Binding],
    ) -> Binding:
        """Follow a link through consecutive pass nodes.

        Args:
            binding: Link to resolve
            origin: Name of the consumer, used in error paths
            resolved: Cache of pass node handle to its ultimate binding

        Returns:
            The first non-pass link, or the constant or graph input binding
            feeding the pass chain
        """
        path = [origin]
        chain: List[NodeHandle] = []
        seen: Set[NodeHandle] = set()
        current: Binding = binding

        while isinstance(current, LinkBinding):
            node = self.nodes.get(current.node_id)
            if node is None:
                path.append(f"#{current.node_id}")
                raise StructuralError("Link to a missing node", path)
            if not node.type.is_pass:
                break
            if node.id in resolved:
                current = resolved[node.id]
                break
            path.append(node.name)
            if node.id in seen:
                raise StructuralError("Cycle of pass nodes", path)
            seen.add(node.id)
            chain.append(node.id)

            upstream = node.input_binding(0)
            if upstream is None:
                raise StructuralError("Pass node without input", path)
            current = upstream

        for handle in chain:
            resolved[handle] = current
        if isinstance(current, ValueBinding):
            return ValueBinding(current.value.copy())
        return current

    def skip_pass_nodes(self) -> int:
        """Rewire every link through pass nodes and drop the pass nodes.

        Returns:
            Number of pass nodes removed
        """
        self._require_rewritable("skip pass nodes")
        resolved: Dict[NodeHandle, Binding] = {}

        for node in list(self.nodes.values()):
            if node.type.is_pass:
                continue
            for socket_name, binding in list(node.inputs.items()):
                if isinstance(binding, LinkBinding):
                    node.inputs[socket_name] = self._resolve_link(
                        binding, f"{node.name}.{socket_name}", resolved
                    )

        # pass chains nothing consumes are still checked for cycles
        for node in list(self.nodes.values()):
            if not node.type.is_pass or node.id in resolved or not node.type.inputs:
                continue
            socket = node.type.inputs[0]
            upstream = node.input_binding(socket)
            if isinstance(upstream, LinkBinding):
                self._resolve_link(upstream, f"{node.name}.{socket.name}", resolved)

        for graph_output in self.outputs:
            if graph_output.link is None:
                continue
            source = self._resolve_link(graph_output.link, graph_output.name, resolved)
            if isinstance(source, LinkBinding):
                graph_output.link = source
            elif isinstance(source, ValueBinding):
                if source.value.typedesc != graph_output.typedesc:
                    raise StructuralError("Output type mismatch", [graph_output.name])
                graph_output.default_value = source.value
                graph_output.link = None
            else:
                raise StructuralError(
                    "Output resolves to a graph input", [graph_output.name, source.input_name]
                )

        pass_nodes = [handle for handle, node in self.nodes.items() if node.type.is_pass]
        for handle in pass_nodes:
            self._remove_node(handle)
        return len(pass_nodes)

    def remove_unused_nodes(self) -> int:
        """Drop every instance not reachable backward from a graph output.

        Returns:
            Number of instances removed
        """
        self._require_rewritable("remove unused nodes")
        reachable: Set[NodeHandle] = set()
        stack: List[Tuple[NodeHandle, str]] = [
            (graph_output.link.node_id, graph_output.name)
            for graph_output in self.outputs
            if graph_output.link is not None
        ]

        while stack:
            handle, referrer = stack.pop()
            if handle in reachable:
                continue
            node = self.nodes.get(handle)
            if node is None:
                raise StructuralError("Link to a missing node", [referrer, f"#{handle}"])
            reachable.add(handle)
            for binding in node.inputs.values():
                if isinstance(binding, LinkBinding) and binding.node_id not in reachable:
                    stack.append((binding.node_id, node.name))

        unused = [handle for handle in self.nodes if handle not in reachable]
        for handle in unused:
            self._remove_node(handle)
        return len(unused)

    def validate(self) -> None:
        """Check that every binding is well-formed and type-consistent.

        Raises:
            StructuralError: On the first offending binding
        """
        for node in self.nodes.values():
            if node.owner is not self:
                raise StructuralError("Node owned by another graph", [node.name])
            for socket in node.type.inputs:
                self._validate_binding(node, socket, node.input_binding(socket))

        for graph_output in self.outputs:
            if graph_output.link is None:
                continue
            source = self._link_source(graph_output.link, graph_output.name)
            if source.typedesc != graph_output.typedesc:
                raise StructuralError(
                    "Output type mismatch",
                    [self.nodes[graph_output.link.node_id].name, graph_output.name],
                )

    def _link_source(self, link: LinkBinding, referrer: str) -> NodeSocket:
        node = self.nodes.get(link.node_id)
        if node is None:
            raise StructuralError("Link to a missing node", [referrer, f"#{link.node_id}"])
        socket = node.type.find_output(link.socket)
        if socket is None:
            raise StructuralError("Link to a missing socket", [referrer, f"{node.name}.{link.socket}"])
        return socket

    def _validate_binding(self, node: NodeInstance, socket: NodeSocket, binding: Binding) -> None:
        where = f"{node.name}.{socket.name}"
        if isinstance(binding, LinkBinding):
            source = self._link_source(binding, where)
            if source.typedesc != socket.typedesc:
                raise StructuralError("Link type mismatch", [where])
        elif isinstance(binding, ExternBinding):
            graph_input = self.get_input(binding.input_name)
            if graph_input is None:
                raise StructuralError("Binding to a missing graph input", [where, binding.input_name])
            if graph_input.typedesc != socket.typedesc:
                raise StructuralError("Graph input type mismatch", [where, binding.input_name])
        elif binding.value.typedesc != socket.typedesc:
            raise StructuralError("Constant type mismatch", [where])

    # -- consumer read API -------------------------------------------------

    def topological_order(self) -> List[NodeInstance]:
        """Instances ordered so that every producer precedes its consumers.

        Raises:
            ValueError: If the links form a cycle
        """
        indegree: Dict[NodeHandle, int] = {handle: 0 for handle in self.nodes}
        successors: Dict[NodeHandle, List[NodeHandle]] = {handle: [] for handle in self.nodes}
        for node in self.nodes.values():
            producers = {
                binding.node_id
                for binding in node.inputs.values()
                if isinstance(binding, LinkBinding) and binding.node_id in self.nodes
            }
            for producer in producers:
                successors[producer].append(node.id)
                indegree[node.id] += 1

        queue = deque(sorted(handle for handle, degree in indegree.items() if degree == 0))
        order: List[NodeInstance] = []
        while queue:
            handle = queue.popleft()
            order.append(self.nodes[handle])
            for successor in successors[handle]:
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    queue.append(successor)

        if len(order) != len(self.nodes):
            raise ValueError(f"Cycle detected in graph {self.name}")
        return order


def _find_port(ports: List[Any], key: Union[str, int]) -> Optional[Any]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return ports[key] if 0 <= key < len(ports) else None
    for port in ports:
        if port.name == key:
            return port
    return None
