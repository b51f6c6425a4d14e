"""cpptrim CLI - remove unreachable code from merged C++ sources."""
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import get_config
from .errors import OptimizerError
from .optimizer import OptimizationResult, Optimizer, build_graph
from .utils.logger import setup_logging
from .utils.safe_console import SafeConsole

app = typer.Typer(
    name="cpptrim",
    help="Remove declarations, preprocessor branches and macros unreachable from main",
    add_completion=False
)
console = SafeConsole()
err_console = SafeConsole(stderr=True)


def _compiler_options(defines: List[str], undefines: List[str], includes: List[str],
                      system_includes: List[str], std: Optional[str]) -> List[str]:
    # Undefines come last so they win over defines
    options = [f"-D{d}" for d in defines]
    options += [f"-U{u}" for u in undefines]
    options += [f"-I{i}" for i in includes]
    for directory in system_includes:
        options += ["-isystem", directory]
    options.append(f"-std={std or get_config().std}")
    return options


def _print_stats(path: Path, result: OptimizationResult):
    """Render a table of what was removed from one file."""
    table = Table(title=f"cpptrim: {escape(str(path))}", show_lines=False)
    table.add_column("Kind", style="cyan")
    table.add_column("Removed", style="red")
    table.add_column("Line", justify="right")
    table.add_column("Reason", style="dim")

    for occ in result.removed.unused:
        table.add_row(occ.kind, escape(', '.join(occ.keys)), str(occ.node.start_point[0] + 1), "unused")
    for occ in result.removed.redundant:
        table.add_row(occ.kind, escape(', '.join(occ.keys)), str(occ.node.start_point[0] + 1),
                      "redundant declaration")
    for record in result.removed_macros:
        table.add_row("macro", escape(record.name), '', "no live expansion")

    err_console.print(table)
    err_console.print(
        f"[bold]{result.input_size}[/bold] → [bold]{result.output_size}[/bold] bytes; "
        f"{len(result.used)} declarations used, "
        f"{result.inactive_branches} inactive branches removed, "
        f"{result.namespaces_deleted} namespace blocks deleted, "
        f"{result.namespaces_merged} reopenings merged"
    )


@app.command()
def optimize(
    files: List[Path] = typer.Argument(..., help="Merged C++ source files", exists=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o",
                                          help="Output file (single input only)"),
    define: List[str] = typer.Option([], "--define", "-D", help="Define a macro: NAME[=VALUE]"),
    undefine: List[str] = typer.Option([], "--undefine", "-U", help="Undefine a macro"),
    include: List[str] = typer.Option([], "--include-dir", "-I", help="Include directory"),
    isystem: List[str] = typer.Option([], "--isystem", help="System include directory"),
    std: Optional[str] = typer.Option(None, "--std", help="Language standard, e.g. c++17"),
    keep_macro: List[str] = typer.Option([], "--keep-macro", help="Never remove this macro's definition"),
    entry: List[str] = typer.Option([], "--entry", help="Additional entry point (qualified name)"),
    dump_graph: Optional[Path] = typer.Option(None, "--dump-graph",
                                              help="Write the dependency graph in DOT format"),
    stats: bool = typer.Option(False, "--stats", help="Print what was removed"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Optimize one or more merged translation units.

    A single file is written to stdout (or --output). With several files,
    each FILE is written to FILE.min.cpp next to it.
    """
    config = get_config()
    setup_logging("DEBUG" if verbose else config.log_level, err_console)

    if output is not None and len(files) > 1:
        err_console.print("[red]✗ --output only works with a single input file[/red]")
        raise typer.Exit(2)

    entry_points = list(dict.fromkeys(config.entry_points + entry))
    optimizer = Optimizer(
        cmd_line_options=_compiler_options(define, undefine, include, isystem, std),
        macros_to_keep=config.keep_macros + keep_macro,
        entry_points=entry_points,
    )

    failures = 0
    for path in files:
        try:
            result = optimizer.run_file(path)
        except OptimizerError as e:
            failures += 1
            err_console.print(f"[red]✗ {escape(str(path))}: {escape(str(e))}[/red]")
            continue

        if dump_graph is not None:
            graph_path = dump_graph if len(files) == 1 else dump_graph.with_name(
                f"{path.stem}.{dump_graph.name}")
            graph_path.write_text(result.model.to_dot(), encoding='utf-8')

        if len(files) == 1 and output is None:
            console.write_source(result.text)
        else:
            target = output if output is not None else path.with_name(path.stem + '.min.cpp')
            target.write_bytes(result.text.encode('utf-8', errors='surrogateescape'))
            err_console.print(f"[green]✓[/green] {escape(str(path))} → {escape(str(target))}")

        if stats:
            _print_stats(path, result)

    if failures:
        raise typer.Exit(1)


@app.command()
def graph(
    file: Path = typer.Argument(..., help="Merged C++ source file"),
    define: List[str] = typer.Option([], "--define", "-D", help="Define a macro: NAME[=VALUE]"),
    undefine: List[str] = typer.Option([], "--undefine", "-U", help="Undefine a macro"),
    std: Optional[str] = typer.Option(None, "--std", help="Language standard, e.g. c++17"),
    entry: List[str] = typer.Option([], "--entry", help="Additional entry point (qualified name)"),
):
    """Print the declaration dependency graph in Graphviz DOT format."""
    config = get_config()
    setup_logging(config.log_level, err_console)
    try:
        model = build_graph(file, _compiler_options(define, undefine, [], [], std),
                            list(dict.fromkeys(config.entry_points + entry)))
    except OptimizerError as e:
        err_console.print(f"[red]✗ {escape(str(file))}: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    console.write_source(model.to_dot())


@app.command()
def version():
    """Print the cpptrim version."""
    console.print(f"cpptrim {__version__}")


if __name__ == "__main__":
    app()
