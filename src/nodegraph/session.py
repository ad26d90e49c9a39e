"""Compile sessions owning a node type registry and its graphs.

A session replaces process-wide registry state: each session constructs its
own ``NodeTypeRegistry``, hands it to every graph it creates, and releases
both on ``close``.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import structlog

from nodegraph_ir.catalog import register_builtin_types
from nodegraph_ir.graph import NodeGraph
from nodegraph_ir.schema import NodeTypeRegistry

logger = structlog.get_logger(__name__)


class SessionError(Exception):
    """Raised when session operations fail."""
    pass


class CompileSession:
    """Session manager for a registry and the graphs built against it."""

    def __init__(self, max_graphs: int = 16, register_builtins: bool = True):
        """Initialize session.

        Args:
            max_graphs: Maximum number of graphs to keep in the session
            register_builtins: Register converter and pass node types
        """
        if max_graphs < 1:
            raise SessionError(f"max_graphs must be positive, got {max_graphs}")

        self.registry = NodeTypeRegistry()
        self._graphs: Dict[str, NodeGraph] = {}
        self._created_at: Dict[str, float] = {}
        self._max_graphs = max_graphs
        self._closed = False

        if register_builtins:
            register_builtin_types(self.registry)

        logger.info(
            "Compile session initialized",
            max_graphs=max_graphs,
            node_types=len(self.registry),
        )

    def __enter__(self) -> CompileSession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise SessionError("Session is closed")

    def cleanup_old_graphs(self) -> None:
        """Remove oldest graphs if we exceed the limit."""
        if len(self._graphs) <= self._max_graphs:
            return

        sorted_graphs = sorted(self._created_at.items(), key=lambda x: x[1])
        graphs_to_remove = sorted_graphs[:-self._max_graphs]

        for name, _ in graphs_to_remove:
            self.remove_graph(name)

    def new_graph(self, name: str) -> NodeGraph:
        """Create a graph bound to the session registry.

        Raises:
            SessionError: If the session is closed or the name is taken
        """
        self._check_open()
        if name in self._graphs:
            raise SessionError(f"Graph already exists in session: {name}")

        graph = NodeGraph(self.registry, name=name)
        self._graphs[name] = graph
        self._created_at[name] = time.monotonic()
        self.cleanup_old_graphs()

        logger.debug("Created graph", graph=name)
        return graph

    def has_graph(self, name: str) -> bool:
        return name in self._graphs

    def get_graph(self, name: str) -> Optional[NodeGraph]:
        return self._graphs.get(name)

    def list_graphs(self) -> List[str]:
        return list(self._graphs.keys())

    def remove_graph(self, name: str) -> None:
        """Remove a graph from the session."""
        if self._graphs.pop(name, None) is not None:
            logger.debug("Removed graph from session", graph=name)
        self._created_at.pop(name, None)

    def get_session_stats(self) -> Dict[str, Any]:
        """Get session statistics."""
        return {
            "graphs": len(self._graphs),
            "max_graphs": self._max_graphs,
            "graph_names": list(self._graphs.keys()),
            "finalized": sum(1 for graph in self._graphs.values() if graph.is_finalized),
            "node_types": len(self.registry),
            "closed": self._closed,
        }

    def close(self) -> None:
        """Release all graphs and node types."""
        if self._closed:
            return
        self._graphs.clear()
        self._created_at.clear()
        self.registry.clear()
        self._closed = True
        logger.info("Compile session closed")
