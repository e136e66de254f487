"""
veridity-circuits: build and inspect circuit artifacts.

Implements:
  - veridity-circuits build <circuit>   Compile + ceremony + keys for one circuit
  - veridity-circuits build-all         Same, for every registered circuit
  - veridity-circuits status            Which artifacts are present
  - veridity-circuits clean <circuit>   Remove one circuit's artifacts

Configuration comes from the usual VERIDITY_* environment (see core.config).
Exit codes: 0 ok, 1 build/ceremony failure, 2 usage error.
"""

from __future__ import annotations

import json
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from core.config import load_settings
from core.errors import VeridityError
from core.logging import setup_from_settings

from ..builder import BuildResult, CircuitBuilder

app = typer.Typer(
    name="veridity-circuits",
    add_completion=False,
    no_args_is_help=True,
    help="Build Groth16 artifacts for the Veridity circuits.",
)

console = Console()


def _builder() -> CircuitBuilder:
    settings = load_settings()
    setup_from_settings(settings)
    return CircuitBuilder.from_settings(settings)


def _fail(err: VeridityError) -> None:
    console.print(f"[red]{err.code_value}[/red] {err.message}")
    for k, v in err.data.items():
        if k == "stderr" and v:
            console.print(v, markup=False, highlight=False)
        else:
            console.print(f"  {k}: {v}", markup=False)
    raise typer.Exit(1 if err.category.value == "build" else 2)


def _print_result(res: BuildResult) -> None:
    t = Table(title=res.circuit_id, box=box.SIMPLE, show_header=False)
    t.add_row("ran", ", ".join(res.steps_run) or "-")
    t.add_row("skipped", ", ".join(res.steps_skipped) or "-")
    t.add_row("proving key", str(res.proving_key))
    t.add_row("verification key", str(res.verification_key))
    console.print(t)


@app.command()
def build(
    circuit: str = typer.Argument(..., help="Circuit id, e.g. age_verification"),
    tier: Optional[int] = typer.Option(None, "--tier", min=8, max=28, help="Powers-of-tau exponent override"),
    contribution: Optional[str] = typer.Option(None, "--contribution", help="Ceremony contribution name"),
    rebuild: bool = typer.Option(False, "--rebuild", help="Discard existing artifacts (new circuit version)"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Compile, run the ceremony and publish keys for one circuit."""
    try:
        res = _builder().build(circuit, tier, contribution, rebuild=rebuild)
    except VeridityError as e:
        _fail(e)
        return
    if as_json:
        typer.echo(json.dumps(res.to_dict(), indent=2))
    else:
        _print_result(res)


@app.command("build-all")
def build_all(
    rebuild: bool = typer.Option(False, "--rebuild", help="Discard existing artifacts first"),
) -> None:
    """Build every registered circuit."""
    try:
        results = _builder().build_all(rebuild=rebuild)
    except VeridityError as e:
        _fail(e)
        return
    for res in results.values():
        _print_result(res)


@app.command()
def status(as_json: bool = typer.Option(False, "--json", help="Print status as JSON")) -> None:
    """Show which artifacts exist for each circuit."""
    rows = _builder().status()
    if as_json:
        typer.echo(json.dumps(rows, indent=2))
        return
    t = Table(title="Circuit artifacts", box=box.SIMPLE)
    for col in ("circuit", "compiled", "setup", "ready", "r1cs", "wasm", "zkey", "vkey"):
        t.add_column(col)
    mark = lambda b: "[green]yes[/green]" if b else "[red]no[/red]"  # noqa: E731
    for r in rows:
        f = r["files"]
        t.add_row(
            r["circuit_id"],
            mark(r["compiled"]),
            mark(r["setup"]),
            mark(r["ready"]),
            mark(f["r1cs"]),
            mark(f["wasm"]),
            mark(f["zkey"]),
            mark(f["vkey"]),
        )
    console.print(t)


@app.command()
def clean(
    circuit: str = typer.Argument(..., help="Circuit id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete one circuit's artifacts (the shared powers-of-tau file is kept)."""
    if not yes:
        typer.confirm(f"Remove all artifacts of {circuit}?", abort=True)
    try:
        n = _builder().clean(circuit)
    except VeridityError as e:
        _fail(e)
        return
    console.print(f"removed {n} file(s) for {circuit}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
