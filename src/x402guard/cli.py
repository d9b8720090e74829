"""
CLI entry point for x402guard.

This module provides the Typer-based command-line interface for x402guard.

Commands:
    validate    Check a policy file and print every diagnostic
    generate    Render enforcement middleware for a web framework
    simulate    Run scripted traffic through the policy evaluator
    targets     List code generation targets

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    policy, codegen and simulate modules. Everything it does is available
    programmatically.

Exit codes:
    0   Success (warnings do not fail a command)
    1   Unreadable or malformed input, error diagnostics, unknown target
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from x402guard import __version__
from x402guard.audit import AuditSink, build_audit_sink
from x402guard.codegen import TARGETS, generate as render_target, supported_targets
from x402guard.errors import ConflictError, X402GuardError
from x402guard.policy import ensure_valid, load_policy, validate as validate_policy
from x402guard.report import (
    build_error_dict,
    build_generation_dict,
    build_simulation_dict,
    build_validation_dict,
    print_rules,
    print_simulation_report,
    print_validation_report,
    to_json,
)
from x402guard.simulate import Simulator, load_traffic

# Initialize Typer app with metadata
app = typer.Typer(
    name="x402guard",
    help="Validate x402 payment policies, simulate traffic, and generate enforcement middleware.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich consoles: results on stdout, logs and errors on stderr
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("x402guard")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]x402guard[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    x402guard - Policy enforcement for pay-per-request APIs.

    Declare allowlists, denylists, rate limits and spending caps once, test
    them locally, and deploy them as Express or Fastify middleware.
    """
    pass


VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", help="Log progress (INFO level)."),
]
DebugOption = Annotated[
    bool,
    typer.Option("--debug", help="Log decision traces and show full error tracebacks."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


@app.command()
def validate(
    policy_path: Annotated[
        Path,
        typer.Argument(help="Path to the policy YAML file."),
    ],
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Check a policy file and report every problem at once.

    Example:
        $ x402guard validate policy.yaml
    """
    _configure_logging(verbose, debug)
    source = str(policy_path)

    try:
        policy = load_policy(policy_path)
    except X402GuardError as e:
        if json_output:
            print(to_json(build_validation_dict(source, None, [], error=e)))
        else:
            _print_error(e, debug)
        raise typer.Exit(code=1)

    conflicts = validate_policy(policy)

    if json_output:
        print(to_json(build_validation_dict(source, policy, conflicts)))
    else:
        print_validation_report(console, source, policy, conflicts)
        if verbose and policy.policies:
            console.print()
            print_rules(console, policy)

    if any(c.is_error for c in conflicts):
        raise typer.Exit(code=1)


@app.command()
def generate(
    policy_path: Annotated[
        Path,
        typer.Argument(help="Path to the policy YAML file."),
    ],
    target: Annotated[
        str,
        typer.Option(
            "--target",
            "-t",
            help=f"Framework to generate for ({', '.join(sorted(TARGETS))}).",
        ),
    ],
    out: Annotated[
        Optional[Path],
        typer.Option(
            "--out",
            "-o",
            help="Write the generated module here instead of stdout.",
        ),
    ] = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Render enforcement middleware for a validated policy file.

    Example:
        $ x402guard generate policy.yaml --target express --out x402-policy.js
    """
    _configure_logging(verbose, debug)
    source = str(policy_path)

    try:
        policy = load_policy(policy_path)
        warnings = ensure_valid(policy)
        code = render_target(policy, target, source_file_name=policy_path.name)
    except X402GuardError as e:
        if json_output:
            print(to_json(build_error_dict(e)))
        else:
            _print_error(e, debug)
        raise typer.Exit(code=1)

    for warning in warnings:
        logger.warning("%s", warning.message)

    if out is not None:
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(code, encoding="utf-8")
        except OSError as e:
            if json_output:
                print(to_json({"error": True, "error_type": "write_error", "message": str(e)}))
            else:
                err_console.print(f"[red]Cannot write {escape(str(out))}: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)

    if json_output:
        print(to_json(build_generation_dict(
            source,
            target.strip().lower(),
            str(out) if out is not None else None,
            code,
            warnings,
        )))
    elif out is not None:
        console.print(
            f"[green]✓[/green] Wrote {target.strip().lower()} middleware to "
            f"[bold]{escape(str(out))}[/bold] ({len(policy.policies)} rule(s))"
        )
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {escape(warning.message)}")
    else:
        sys.stdout.write(code)


@app.command()
def simulate(
    policy_path: Annotated[
        Path,
        typer.Argument(help="Path to the policy YAML file."),
    ],
    traffic_path: Annotated[
        Path,
        typer.Argument(help="Path to the traffic YAML file."),
    ],
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Run scripted traffic through the policy evaluator.

    Prints denials (every request with --verbose) and a summary. The exit
    code reflects whether the run completed, not what was decided.

    Example:
        $ x402guard simulate policy.yaml traffic.yaml
    """
    _configure_logging(verbose, debug)

    try:
        policy = load_policy(policy_path)
        ensure_valid(policy)
        traffic = load_traffic(traffic_path)
    except X402GuardError as e:
        if json_output:
            print(to_json(build_error_dict(e)))
        else:
            _print_error(e, debug)
        raise typer.Exit(code=1)

    sink: AuditSink | None = None
    if policy.audit.enabled:
        # Keep stdout parseable when it carries the JSON report
        stream = sys.stderr if json_output and policy.audit.writes_to_stdout else None
        sink = build_audit_sink(policy.audit, stream=stream)

    try:
        result = Simulator(policy, sink=sink).run(traffic)
    except X402GuardError as e:
        if json_output:
            print(to_json(build_error_dict(e)))
        else:
            _print_error(e, debug)
        raise typer.Exit(code=1)
    finally:
        if sink is not None:
            sink.close()

    if json_output:
        print(to_json(build_simulation_dict(str(policy_path), str(traffic_path), result)))
    else:
        print_simulation_report(console, result, verbose=verbose)


@app.command()
def targets() -> None:
    """List the frameworks `generate` can render for."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Target", style="cyan")
    table.add_column("Description")
    for name in supported_targets():
        table.add_row(name, TARGETS[name].description)
    console.print(table)


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Route library logs through Rich on stderr."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug)],
        force=True,
    )


def _print_error(error: X402GuardError, debug: bool) -> None:
    """Print an x402guard error with its suggestion and details."""
    err_console.print(f"[red]Error:[/red] {escape(str(error))}")
    if isinstance(error, ConflictError):
        for conflict in error.conflicts:
            err_console.print(f"  [red]✗[/red] {escape(conflict.message)}")
    if debug:
        err_console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")


if __name__ == "__main__":
    app()
