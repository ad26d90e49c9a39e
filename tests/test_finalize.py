"""Tests for the finalize pipeline: pass-node elision and dead-node removal."""

from __future__ import annotations

import pytest

from nodegraph_ir.graph import NodeGraph
from nodegraph_ir.instance import ExternBinding, LinkBinding, ValueBinding
from nodegraph_ir.schema import GraphStateError, StructuralError
from nodegraph_ir.typedesc import Value


def _names(graph: NodeGraph) -> set[str]:
    return {node.name for node in graph}


def _assert_postcondition(graph: NodeGraph) -> None:
    """Check the contract relied on by code generation."""
    assert not any(node.type.is_pass for node in graph)
    graph.validate()
    for node in graph:
        for socket in node.type.inputs:
            link = node.input_link(socket)
            if link is not None:
                source = graph.get_node(link.node_id)
                assert source.type.find_output(link.socket).typedesc == socket.typedesc


class TestFinalize:
    """Test cases for the overall pipeline."""

    def test_finalize_chain(self, chain_graph: NodeGraph):
        """Test the pass node is skipped and the orphan removed."""
        source = chain_graph.get_node("source")
        add = chain_graph.get_node("add")

        assert chain_graph.finalize()
        assert chain_graph.state == "FINALIZED"
        assert chain_graph.is_finalized
        assert _names(chain_graph) == {"source", "add"}
        assert add.input_link("a") == LinkBinding(source.id, "value")
        assert chain_graph.get_output("out").link == LinkBinding(add.id, "value")
        _assert_postcondition(chain_graph)

    def test_output_through_pass_node(self, graph: NodeGraph):
        """Test an output linked to a pass node resolves to its producer."""
        source = graph.add_node("VALUE_FLOAT", "source")
        relay = graph.add_node("PASS_FLOAT", "relay")
        graph.add_output("out", "FLOAT")
        graph.add_link(source, "value", relay, "value")
        graph.set_output_link("out", relay, "value")

        graph.finalize()
        assert graph.get_output("out").link == LinkBinding(source.id, "value")
        assert _names(graph) == {"source"}

    def test_orphan_removed(self, graph: NodeGraph):
        """Test nodes without a path to an output are removed."""
        source = graph.add_node("VALUE_FLOAT", "source")
        graph.add_node("ADD_FLOAT", "orphan")
        lonely = graph.add_node("VALUE_INT", "lonely")
        consumer = graph.add_node("ADD_FLOAT", "consumer")
        graph.add_link(lonely, "value", consumer, "a")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", source, "value")

        graph.finalize()
        assert _names(graph) == {"source"}

    def test_graph_without_links(self, graph: NodeGraph):
        """Test a graph whose outputs are unlinked keeps no nodes."""
        graph.add_node("ADD_FLOAT", "add")
        graph.add_output("out", "FLOAT", 1.0)

        graph.finalize()
        assert len(graph) == 0
        assert graph.get_output("out").default_value == Value.create("FLOAT", 1.0)

    def test_finalize_twice(self, chain_graph: NodeGraph):
        """Test finalize can only run once."""
        chain_graph.finalize()
        with pytest.raises(GraphStateError):
            chain_graph.finalize()

    def test_passes_idempotent(self, chain_graph: NodeGraph):
        """Test rerunning the passes on a finalized graph removes nothing."""
        chain_graph.finalize()
        count = len(chain_graph)

        assert chain_graph.skip_pass_nodes() == 0
        assert chain_graph.remove_unused_nodes() == 0
        assert len(chain_graph) == count

    def test_converter_survives(self, graph: NodeGraph):
        """Test inserted converters are kept as ordinary reachable nodes."""
        count = graph.add_node("VALUE_INT", "count")
        relay = graph.add_node("PASS_INT", "relay")
        graph.add_output("out", "FLOAT")
        graph.add_link(count, "value", relay, "value")
        assert graph.set_output_link("out", relay, "value")

        graph.finalize()
        assert _names(graph) == {"count", "INT_TO_FLOAT_1"}
        converter = graph.get_node("INT_TO_FLOAT_1")
        assert converter.input_link("value") == LinkBinding(count.id, "value")
        _assert_postcondition(graph)

    def test_graph_input_bindings_survive(self, graph: NodeGraph):
        """Test external input bindings are kept."""
        scale = graph.add_input("scale", "FLOAT")
        add = graph.add_node("ADD_FLOAT", "add")
        add.set_input_extern("b", scale)
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        graph.finalize()
        assert add.input_binding("b") == ExternBinding("scale")


class TestPassNodes:
    """Test cases for pass-node elision."""

    def test_three_pass_chain(self, graph: NodeGraph):
        """Test consecutive pass nodes collapse to one direct link."""
        source = graph.add_node("VALUE_FLOAT3", "source")
        previous = source
        for i in range(3):
            relay = graph.add_node("PASS_FLOAT3", f"relay{i}")
            graph.add_link(previous, "value", relay, "value")
            previous = relay
        mix = graph.add_node("MIX_FLOAT3", "mix")
        graph.add_link(previous, "value", mix, "a")
        graph.add_output("out", "FLOAT3")
        graph.set_output_link("out", mix, "value")

        graph.finalize()
        assert _names(graph) == {"source", "mix"}
        assert mix.input_link("a") == LinkBinding(source.id, "value")

    def test_shared_pass_chain(self, graph: NodeGraph):
        """Test several consumers of one pass chain are all rewired."""
        source = graph.add_node("VALUE_FLOAT", "source")
        relay = graph.add_node("PASS_FLOAT", "relay")
        add = graph.add_node("ADD_FLOAT", "add")
        graph.add_link(source, "value", relay, "value")
        graph.add_link(relay, "value", add, "a")
        graph.add_link(relay, "value", add, "b")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        graph.finalize()
        assert add.input_link("a") == LinkBinding(source.id, "value")
        assert add.input_link("b") == LinkBinding(source.id, "value")

    def test_pass_chain_from_constant(self, graph: NodeGraph):
        """Test a consumer adopts the constant feeding a pass chain."""
        relay = graph.add_node("PASS_FLOAT", "relay")
        relay.set_input_value("value", 6.5)
        add = graph.add_node("ADD_FLOAT", "add")
        graph.add_link(relay, "value", add, "a")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        graph.finalize()
        assert add.input_binding("a") == ValueBinding(Value.create("FLOAT", 6.5))
        assert _names(graph) == {"add"}

    def test_pass_chain_from_graph_input(self, graph: NodeGraph):
        """Test a consumer adopts the graph input feeding a pass chain."""
        scale = graph.add_input("scale", "FLOAT")
        relay = graph.add_node("PASS_FLOAT", "relay")
        relay.set_input_extern("value", scale)
        add = graph.add_node("ADD_FLOAT", "add")
        graph.add_link(relay, "value", add, "a")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        graph.finalize()
        assert add.input_binding("a") == ExternBinding("scale")

    def test_output_from_constant_pass(self, graph: NodeGraph):
        """Test an output fed by a constant pass chain takes it as default."""
        relay = graph.add_node("PASS_FLOAT", "relay")
        relay.set_input_value("value", 2.0)
        out = graph.add_output("out", "FLOAT")
        graph.set_output_link("out", relay, "value")

        graph.finalize()
        assert out.link is None
        assert out.default_value == Value.create("FLOAT", 2.0)
        assert len(graph) == 0

    def test_output_from_graph_input_pass(self, graph: NodeGraph):
        """Test an output fed only by a graph input is a structural error."""
        scale = graph.add_input("scale", "FLOAT")
        relay = graph.add_node("PASS_FLOAT", "relay")
        relay.set_input_extern("value", scale)
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", relay, "value")

        with pytest.raises(StructuralError, match="graph input"):
            graph.finalize()
        assert graph.state == "FAILED"

    def test_pass_cycle_detected(self, graph: NodeGraph):
        """Test a cycle of pass nodes is reported instead of looping."""
        first = graph.add_node("PASS_FLOAT", "first")
        second = graph.add_node("PASS_FLOAT", "second")
        third = graph.add_node("PASS_FLOAT", "third")
        graph.add_link(first, "value", second, "value")
        graph.add_link(second, "value", third, "value")
        graph.add_link(third, "value", first, "value")
        add = graph.add_node("ADD_FLOAT", "add")
        graph.add_link(third, "value", add, "a")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        with pytest.raises(StructuralError, match="Cycle of pass nodes") as excinfo:
            graph.finalize()

        path = excinfo.value.path
        assert path[0] == "add.a"
        assert path[-1] in {"first", "second", "third"}
        assert path.count(path[-1]) == 2
        assert graph.state == "FAILED"

    def test_unconsumed_pass_cycle_detected(self, graph: NodeGraph):
        """Test a pass cycle is reported even when nothing reads from it."""
        first = graph.add_node("PASS_FLOAT", "first")
        second = graph.add_node("PASS_FLOAT", "second")
        graph.add_link(first, "value", second, "value")
        graph.add_link(second, "value", first, "value")
        source = graph.add_node("VALUE_FLOAT", "source")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", source, "value")

        with pytest.raises(StructuralError, match="Cycle of pass nodes") as excinfo:
            graph.finalize()

        path = excinfo.value.path
        assert path[0] in {"first.value", "second.value"}
        assert path.count(path[-1]) == 2
        assert graph.state == "FAILED"

    def test_failed_graph_is_unusable(self, graph: NodeGraph):
        """Test nothing can be done with a graph after a structural failure."""
        first = graph.add_node("PASS_FLOAT", "first")
        graph.add_link(first, "value", first, "value")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", first, "value")

        with pytest.raises(StructuralError):
            graph.finalize()
        with pytest.raises(GraphStateError):
            graph.finalize()
        with pytest.raises(GraphStateError):
            graph.remove_unused_nodes()
        with pytest.raises(GraphStateError):
            graph.add_node("ADD_FLOAT")


class TestStructuralErrors:
    """Test cases for dangling links detected during finalize."""

    def test_output_linked_to_missing_node(self, graph: NodeGraph):
        """Test an output pointing at a missing instance is reported."""
        out = graph.add_output("out", "FLOAT")
        out.link = LinkBinding(42, "value")

        with pytest.raises(StructuralError, match="missing node") as excinfo:
            graph.finalize()
        assert excinfo.value.path == ["out", "#42"]

    def test_input_linked_to_missing_node(self, graph: NodeGraph):
        """Test a consumer pointing at a missing instance is reported."""
        add = graph.add_node("ADD_FLOAT", "add")
        add.inputs["a"] = LinkBinding(42, "value")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        with pytest.raises(StructuralError, match="missing node"):
            graph.finalize()

    def test_extern_to_missing_input(self, graph: NodeGraph):
        """Test a binding to an undeclared graph input is reported."""
        add = graph.add_node("ADD_FLOAT", "add")
        add.inputs["a"] = ExternBinding("ghost")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")

        with pytest.raises(StructuralError, match="missing graph input"):
            graph.finalize()

    def test_node_of_another_graph(self, graph: NodeGraph, registry):
        """Test an instance claimed by another graph is reported."""
        add = graph.add_node("ADD_FLOAT", "add")
        graph.add_output("out", "FLOAT")
        graph.set_output_link("out", add, "value")
        add.owner = NodeGraph(registry, name="other")

        with pytest.raises(StructuralError, match="another graph") as excinfo:
            graph.finalize()
        assert excinfo.value.path == ["add"]
