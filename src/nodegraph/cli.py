"""Node-graph CLI for local development and testing.

Provides command-line inspection of the structural node type catalog and a
demonstration of graph construction and finalization.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from nodegraph_ir import __version__
from nodegraph_ir.catalog import CONVERSIONS
from nodegraph_ir.graph import NodeGraph
from nodegraph_ir.schema import NodeTypeRegistry, StructuralError
from nodegraph_ir.serialize import dump, dump_graphviz, write_json

from .logging_setup import CONFIGS, configure_for
from .session import CompileSession

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="nodegraph",
    help="Node-graph IR inspection and finalize demonstration",
    add_completion=False,
)

console = Console()


def _display_error(message: str, error: Optional[Exception] = None) -> None:
    """Display error message with styling."""
    error_text = Text(f"❌ {message}", style="bold red")
    if error:
        error_text.append(f"\n   {str(error)}", style="red")
    console.print(Panel(error_text, title="Error", border_style="red"))


def _display_success(message: str) -> None:
    """Display success message with styling."""
    success_text = Text(f"✅ {message}", style="bold green")
    console.print(Panel(success_text, title="Success", border_style="green"))


def _setup_logging(env: str, verbose: bool) -> None:
    if env not in CONFIGS:
        _display_error(f"Unknown environment: {env}", ValueError(f"Choose one of {', '.join(CONFIGS)}"))
        raise typer.Exit(2)
    if verbose:
        configure_for(env, level="DEBUG")
    else:
        configure_for(env)


@app.command()
def info(
    env: str = typer.Option("testing", "--env", help="Logging environment preset"),
) -> None:
    """Display version and structural catalog statistics."""
    _setup_logging(env, verbose=False)

    with CompileSession() as session:
        stats = session.get_session_stats()
        pass_types = [
            name for name in session.registry
            if session.registry.find_node_type(name).is_pass
        ]

    console.print(Panel(
        f"nodegraph-ir {__version__}\n"
        "Typed dataflow graph IR with converter insertion and finalize pipeline",
        title="nodegraph",
        border_style="blue",
    ))

    table = Table(title="Structural Catalog")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Node types", str(stats["node_types"]))
    table.add_row("Pass node types", str(len(pass_types)))
    table.add_row("Conversions", str(sum(len(targets) for targets in CONVERSIONS.values())))
    console.print(table)


@app.command()
def types(
    pass_only: bool = typer.Option(False, "--pass-only", help="List pass node types only"),
) -> None:
    """List the node types registered by a fresh session."""
    with CompileSession() as session:
        table = Table(title="Node Types")
        table.add_column("Name", style="cyan")
        table.add_column("Inputs", style="white")
        table.add_column("Outputs", style="white")
        table.add_column("Pass", style="green")

        for name in sorted(session.registry):
            node_type = session.registry.find_node_type(name)
            if pass_only and not node_type.is_pass:
                continue
            table.add_row(
                name,
                ", ".join(f"{s.name}: {s.typedesc}" for s in node_type.inputs),
                ", ".join(f"{s.name}: {s.typedesc}" for s in node_type.outputs),
                "✅" if node_type.is_pass else "",
            )

    console.print(table)


@app.command()
def conversions() -> None:
    """Show the implicit conversion dispatch table."""
    table = Table(title="Implicit Conversions")
    table.add_column("From", style="cyan")
    table.add_column("To", style="yellow")
    table.add_column("Converter", style="white")
    table.add_column("Inputs", style="white")

    for source, targets in CONVERSIONS.items():
        if not targets:
            table.add_row(source, "-", "(none)", "")
            continue
        for target, spec in targets.items():
            table.add_row(source, target, spec.node_type, ", ".join(spec.inputs))

    console.print(table)


def _register_demo_types(registry: NodeTypeRegistry) -> None:
    value_int = registry.add_node_type("VALUE_INT")
    value_int.add_input("value", "INT", 0, value_type="CONSTANT")
    value_int.add_output("value", "INT")

    add_float = registry.add_node_type("ADD_FLOAT")
    add_float.add_input("a", "FLOAT", 0.0)
    add_float.add_input("b", "FLOAT", 0.0)
    add_float.add_output("value", "FLOAT")


def build_demo_graph(session: CompileSession) -> NodeGraph:
    """Build a small graph exercising conversion, pass and dead nodes."""
    _register_demo_types(session.registry)
    graph = session.new_graph("demo")

    scale = graph.add_input("scale", "FLOAT")
    graph.set_input_argument("scale", 2.0)
    graph.add_output("result", "FLOAT3", (0.0, 0.0, 0.0))

    count = graph.add_node("VALUE_INT", "count")
    count.set_input_value("value", 4)

    add = graph.add_node("ADD_FLOAT", "add")
    graph.add_link(count, "value", add, "a")
    add.set_input_extern("b", scale)

    relay = graph.add_node("PASS_FLOAT", "relay")
    graph.add_link(add, "value", relay, "value")
    graph.set_output_link("result", relay, "value")

    graph.add_node("ADD_FLOAT", "unused")
    return graph


@app.command()
def demo(
    graphviz: Optional[str] = typer.Option(None, "--graphviz", help="Write finalized graph as Graphviz dot"),
    json_path: Optional[str] = typer.Option(None, "--json", help="Write finalized graph snapshot as JSON"),
    env: str = typer.Option("testing", "--env", help="Logging environment preset"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Build, finalize and dump a demonstration graph."""
    _setup_logging(env, verbose)

    with CompileSession() as session:
        graph = build_demo_graph(session)

        before = io.StringIO()
        dump(graph, before)
        console.print(Panel(Text(before.getvalue().rstrip()), title="Before finalize", border_style="blue"))

        try:
            graph.finalize()
        except StructuralError as e:
            _display_error("Failed to finalize graph", e)
            raise typer.Exit(1)

        after = io.StringIO()
        dump(graph, after)
        console.print(Panel(Text(after.getvalue().rstrip()), title="After finalize", border_style="green"))

        if graphviz:
            dump_graphviz(graph, Path(graphviz), label="demo (finalized)")
            _display_success(f"Graphviz written to: {graphviz}")

        if json_path:
            write_json(graph, Path(json_path))
            _display_success(f"JSON snapshot written to: {json_path}")

        logger.info("Demo finished", nodes=len(graph))


if __name__ == "__main__":
    app()
