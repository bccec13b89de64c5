"""funcpack CLI: build, inspect and verify function archives.

Commands:
- build  [PATH] (--method, --function, --keep, --test, --local)
- config [PATH] prints merged settings and the resolved units
- verify BUNDLE SHA256
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from funcpack.config import load_build_config, resolve_functions
from funcpack.core import build_service
from funcpack.errors import BuildFailure, DebugAbort
from funcpack.package.digest import verify_archive
from funcpack.types import BuildResult

app = typer.Typer(add_completion=False, help="Build and package serverless functions")
console = Console()


def _overrides(
    method: str | None,
    function: list[str] | None,
    keep: bool,
    test: bool,
    local: bool,
) -> dict:
    overrides: dict = {}
    if method:
        overrides["method"] = method
    if function:
        overrides["function"] = function
    if keep:
        overrides["keep"] = True
    if test:
        overrides["test"] = True
    if local:
        overrides["localExecution"] = True
    return overrides


def _summary(result: BuildResult) -> Table:
    table = Table(title="Build Summary")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("result", result.kind)
    if result.is_archive:
        table.add_row("archive", str(result.archive_path))
        table.add_row("sha256", result.sha256 or "")
    else:
        table.add_row("execution root", str(result.execution_root))
    return table


@app.command()
def build(
    path: str = typer.Argument(".", help="Service directory containing serverless.yml"),
    method: str | None = typer.Option(None, "--method", help='"bundle" | "file"'),
    function: list[str] | None = typer.Option(
        None, "--function", "-f", help="Function to build (repeatable)", show_default=False
    ),
    keep: bool = typer.Option(False, "--keep", help="Keep build and artifact directories"),
    test: bool = typer.Option(False, "--test", help="Stop with an error after building"),
    local: bool = typer.Option(False, "--local", help="Prepare for local execution"),
) -> None:
    overrides = _overrides(method, function, keep, test, local)
    try:
        result, _ = build_service(Path(path), overrides)
    except DebugAbort as stop:
        console.print(_summary(stop.result))
        rprint(f"[yellow]{escape(str(stop))}[/yellow]")
        raise typer.Exit(code=2) from None
    except BuildFailure as exc:
        rprint(f"[red]Build failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1) from None

    console.print(_summary(result))
    rprint("[green]Build complete.[/green]")


@app.command()
def config(
    path: str = typer.Argument(".", help="Service directory containing serverless.yml"),
    function: list[str] | None = typer.Option(
        None, "--function", "-f", help="Restrict to a function (repeatable)", show_default=False
    ),
) -> None:
    overrides = {"function": function} if function else None
    try:
        service, settings = load_build_config(Path(path), overrides)
    except BuildFailure as exc:
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from None
    payload = {
        "service": service.service,
        "config": settings.model_dump(mode="json", by_alias=True),
        "functions": [u.model_dump(mode="json") for u in resolve_functions(service, settings)],
    }
    print(json.dumps(payload, indent=2))


@app.command()
def verify(
    bundle: str = typer.Argument(..., help="Path to zip bundle"),
    sha256: str = typer.Argument(..., help="Expected digest (hex or sha256:<hex>)"),
) -> None:
    try:
        verify_archive(Path(bundle), expected=sha256)
    except ValueError as exc:
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from None
    rprint("[green]SHA-256 verified.[/green]")


if __name__ == "__main__":
    app()
