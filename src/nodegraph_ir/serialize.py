"""Read-only diagnostic serializations of node graphs.

Provides a plain text dump, a Graphviz ``dot`` description for external
visualization, and a deterministic JSON snapshot. None of these mutate the
graph and all of them work at any build stage.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Union

import orjson

from .graph import NodeGraph
from .instance import Binding, ExternBinding, LinkBinding, NodeInstance
from .typedesc import Value


def _format_value(value: Optional[Value]) -> str:
    if value is None:
        return "-"
    return repr(value.data)


def _format_binding(graph: NodeGraph, binding: Binding) -> str:
    if isinstance(binding, LinkBinding):
        source = graph.nodes.get(binding.node_id)
        source_name = source.name if source else f"#{binding.node_id}"
        return f"<- {source_name}.{binding.socket}"
    if isinstance(binding, ExternBinding):
        return f"<- input {binding.input_name}"
    return f"= {_format_value(binding.value)}"


def _node_sort_key(node: NodeInstance) -> tuple[str, int]:
    """Order instances by name, then handle, for deterministic output."""
    return (node.name, node.id)


def dump(graph: NodeGraph, stream: Optional[TextIO] = None) -> None:
    """Write a human-readable listing of the graph.

    Args:
        graph: Graph to describe
        stream: Text sink, defaults to stdout
    """
    out = stream if stream is not None else sys.stdout

    out.write(f"NodeGraph {graph.name} ({graph.state.lower()})\n")

    out.write("Inputs:\n")
    for graph_input in graph.inputs:
        out.write(f"  {graph_input.name}: {graph_input.typedesc} = {_format_value(graph_input.value)}\n")

    out.write("Nodes:\n")
    for node in sorted(graph.nodes.values(), key=_node_sort_key):
        flag = " [pass]" if node.type.is_pass else ""
        out.write(f"  {node.name} ({node.type.name}){flag}\n")
        for socket in node.type.inputs:
            binding = node.input_binding(socket)
            out.write(f"    in  {socket.name}: {socket.typedesc} {_format_binding(graph, binding)}\n")
        for socket in node.type.outputs:
            out.write(f"    out {socket.name}: {socket.typedesc} = {_format_value(node.output_value(socket))}\n")

    out.write("Outputs:\n")
    for graph_output in graph.outputs:
        if graph_output.link is not None:
            source = _format_binding(graph, graph_output.link)
        else:
            source = f"= {_format_value(graph_output.default_value)}"
        out.write(f"  {graph_output.name}: {graph_output.typedesc} {source}\n")


def _dot_id(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _dot_record(text: str) -> str:
    # characters with a meaning inside record labels
    for char in "\\{}|<>\"":
        text = text.replace(char, f"\\{char}")
    return text


def _port(kind: str, index: int) -> str:
    return f"{kind}{index}"


def dump_graphviz(graph: NodeGraph, target: Union[TextIO, str, Path], label: str = "") -> None:
    """Write a Graphviz description of the graph.

    Instances become record nodes with one port per socket; links become
    arcs labeled with the linked socket names. Graph inputs and outputs are
    drawn as separate ellipses.

    Args:
        graph: Graph to describe
        target: Text stream or output file path
        label: Graph caption, defaults to the graph name
    """
    if isinstance(target, (str, Path)):
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            _write_graphviz(graph, f, label)
    else:
        _write_graphviz(graph, target, label)


def _write_graphviz(graph: NodeGraph, out: TextIO, label: str) -> None:
    caption = label or graph.name
    out.write(f"digraph {_dot_id(graph.name)} {{\n")
    out.write(f"  label={_dot_id(caption)};\n")
    out.write("  rankdir=LR;\n")
    out.write("  node [shape=record, fontname=\"Helvetica\"];\n")

    for graph_input in graph.inputs:
        out.write(
            f"  {_dot_id(f'input:{graph_input.name}')} "
            f"[shape=ellipse, label={_dot_id(f'{graph_input.name}: {graph_input.typedesc}')}];\n"
        )

    nodes = sorted(graph.nodes.values(), key=_node_sort_key)
    for node in nodes:
        inputs = "|".join(
            f"<{_port('i', i)}>{_dot_record(socket.name)}" for i, socket in enumerate(node.type.inputs)
        )
        outputs = "|".join(
            f"<{_port('o', i)}>{_dot_record(socket.name)}" for i, socket in enumerate(node.type.outputs)
        )
        title = f"{_dot_record(node.name)}\\n{_dot_record(node.type.name)}"
        style = ", style=dashed" if node.type.is_pass else ""
        out.write(
            f"  {_dot_id(f'node:{node.id}')} "
            f"[label=\"{{{{{inputs}}}|{title}|{{{outputs}}}}}\"{style}];\n"
        )

    for graph_output in graph.outputs:
        out.write(
            f"  {_dot_id(f'output:{graph_output.name}')} "
            f"[shape=ellipse, label={_dot_id(f'{graph_output.name}: {graph_output.typedesc}')}];\n"
        )

    for node in nodes:
        for i, socket in enumerate(node.type.inputs):
            binding = node.input_binding(socket)
            target = f"{_dot_id(f'node:{node.id}')}:{_port('i', i)}"
            if isinstance(binding, LinkBinding):
                source = _output_port(graph, binding)
                if source is None:
                    continue
                arc_label = f"{binding.socket} -> {socket.name}"
                out.write(f"  {source} -> {target} [label={_dot_id(arc_label)}];\n")
            elif isinstance(binding, ExternBinding):
                source = _dot_id(f"input:{binding.input_name}")
                out.write(f"  {source} -> {target} [label={_dot_id(socket.name)}];\n")

    for graph_output in graph.outputs:
        link = graph_output.link
        source = _output_port(graph, link) if link is not None else None
        if source is None:
            continue
        out.write(
            f"  {source} -> {_dot_id(f'output:{graph_output.name}')} "
            f"[label={_dot_id(link.socket)}];\n"
        )

    out.write("}\n")


def _output_port(graph: NodeGraph, link: LinkBinding) -> Optional[str]:
    """Dot port reference of a linked output socket, None if it dangles."""
    node = graph.nodes.get(link.node_id)
    if node is None:
        return None
    for i, socket in enumerate(node.type.outputs):
        if socket.name == link.socket:
            return f"{_dot_id(f'node:{node.id}')}:{_port('o', i)}"
    return None


def _value_to_json(value: Optional[Value]) -> Any:
    if value is None:
        return None
    if value.typedesc.base_type in ("POINTER", "MESH"):
        return None if value.data is None else repr(value.data)
    return value.data


def _binding_to_json(binding: Binding) -> Dict[str, Any]:
    if isinstance(binding, LinkBinding):
        return {"kind": "link", "node": binding.node_id, "socket": binding.socket}
    if isinstance(binding, ExternBinding):
        return {"kind": "extern", "input": binding.input_name}
    return {"kind": "value", "value": _value_to_json(binding.value)}


def to_json_dict(graph: NodeGraph) -> Dict[str, Any]:
    """Convert a graph to a JSON-serializable snapshot.

    Instances are listed by handle, sockets in declaration order, so the same
    graph always produces the same snapshot.
    """
    nodes_data: List[Dict[str, Any]] = []
    for handle in sorted(graph.nodes):
        node = graph.nodes[handle]
        nodes_data.append({
            "id": node.id,
            "name": node.name,
            "type": node.type.name,
            "is_pass": node.type.is_pass,
            "inputs": {
                socket.name: _binding_to_json(node.input_binding(socket))
                for socket in node.type.inputs
            },
            "outputs": {
                socket.name: _value_to_json(node.output_value(socket))
                for socket in node.type.outputs
            },
        })

    return {
        "name": graph.name,
        "state": graph.state,
        "inputs": [
            {
                "name": graph_input.name,
                "type": str(graph_input.typedesc),
                "value": _value_to_json(graph_input.value),
            }
            for graph_input in graph.inputs
        ],
        "nodes": nodes_data,
        "outputs": [
            {
                "name": graph_output.name,
                "type": str(graph_output.typedesc),
                "default": _value_to_json(graph_output.default_value),
                "link": _binding_to_json(graph_output.link) if graph_output.link else None,
            }
            for graph_output in graph.outputs
        ],
    }


def to_json_string(graph: NodeGraph, pretty: bool = False) -> str:
    """Convert a graph snapshot to a JSON string.

    Args:
        graph: Graph to describe
        pretty: If True, format JSON with indentation

    Returns:
        JSON string representation
    """
    data = to_json_dict(graph)

    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False)
    else:
        # Use orjson for faster serialization
        return orjson.dumps(data).decode('utf-8')


def write_json(graph: NodeGraph, path: Union[str, Path]) -> None:
    """Write a graph snapshot to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'wb') as f:
        f.write(orjson.dumps(to_json_dict(graph), option=orjson.OPT_INDENT_2))
        f.write(b'\n')
