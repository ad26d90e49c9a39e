"""Pytest configuration and shared fixtures.

Provides common test fixtures and configuration for the node-graph test suite.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import structlog

from nodegraph_ir.catalog import register_builtin_types
from nodegraph_ir.graph import NodeGraph
from nodegraph_ir.schema import NodeTypeRegistry


# Configure test logging
structlog.configure(
    processors=[
        structlog.testing.LogCapture(),
    ],
    logger_factory=structlog.testing.CapturingLoggerFactory(),
    cache_logger_on_first_use=False,
)


@pytest.fixture(autouse=True)
def restore_logging_config() -> Generator[None, None, None]:
    """Restore the test logging setup replaced by logging configuration calls."""
    config = structlog.get_config()
    yield
    structlog.configure(**config)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def register_test_types(registry: NodeTypeRegistry) -> None:
    """Register a small set of value and math node types."""
    for base_type in ("FLOAT", "FLOAT3", "INT", "MATRIX44"):
        node_type = registry.add_node_type(f"VALUE_{base_type}")
        node_type.add_input("value", base_type, value_type="CONSTANT")
        node_type.add_output("value", base_type)

    add_float = registry.add_node_type("ADD_FLOAT")
    add_float.add_input("a", "FLOAT", 0.0)
    add_float.add_input("b", "FLOAT", 0.0)
    add_float.add_output("value", "FLOAT")

    mix = registry.add_node_type("MIX_FLOAT3")
    mix.add_input("factor", "FLOAT", 0.5)
    mix.add_input("a", "FLOAT3")
    mix.add_input("b", "FLOAT3", (1.0, 1.0, 1.0))
    mix.add_output("value", "FLOAT3")


@pytest.fixture
def registry() -> NodeTypeRegistry:
    """Provide a registry with structural and test node types."""
    registry = NodeTypeRegistry()
    register_builtin_types(registry)
    register_test_types(registry)
    return registry


@pytest.fixture
def graph(registry: NodeTypeRegistry) -> NodeGraph:
    """Provide an empty graph bound to the test registry."""
    return NodeGraph(registry, name="test")


@pytest.fixture
def chain_graph(graph: NodeGraph) -> NodeGraph:
    """Provide ``out <- add <- relay (pass) <- source`` plus an orphan node."""
    source = graph.add_node("VALUE_FLOAT", "source")
    source.set_input_value("value", 3.0)
    relay = graph.add_node("PASS_FLOAT", "relay")
    add = graph.add_node("ADD_FLOAT", "add")
    graph.add_node("ADD_FLOAT", "orphan")

    graph.add_output("out", "FLOAT")
    assert graph.add_link(source, "value", relay, "value")
    assert graph.add_link(relay, "value", add, "a")
    assert graph.set_output_link("out", add, "value")
    return graph
