"""
Console reports for x402guard.

Renders validation diagnostics and simulation runs with Rich.

Design Principles:
    - Status at a glance: icons and colors for severity and decisions
    - Rules are named by index and type, never by internal structure
    - Summary last, so it is what stays on screen
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from x402guard.policy.checks import build_checks
from x402guard.schema import Conflict, PolicyFile, Severity
from x402guard.simulate import SimulationResult

# Status icons
ICON_OK = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_WARNING = "[yellow]![/yellow]"
ICON_DENIED = "[yellow]⊘[/yellow]"


def print_validation_report(
    console: Console,
    source: str,
    policy: PolicyFile,
    conflicts: list[Conflict],
) -> None:
    """
    Print every diagnostic for a policy file.

    Args:
        console: Rich Console to print to
        source: File name shown in the header
        policy: Parsed policy file
        conflicts: Validator output
    """
    errors = [c for c in conflicts if c.severity == Severity.ERROR]
    warnings = [c for c in conflicts if c.severity == Severity.WARNING]

    header = Text()
    header.append(" Policy ", style="bold")
    header.append(source, style="bold cyan")
    header.append(" │ ", style="dim")
    if errors:
        header.append("INVALID", style="bold red")
    else:
        header.append("VALID", style="bold green")
    header.append(f" │ {len(policy.policies)} rule(s)", style="dim")
    console.print(Panel(header, expand=False))

    if conflicts:
        console.print()
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("", width=2, justify="center")
        table.add_column("Rules", style="cyan", width=8)
        table.add_column("Problem", overflow="fold")
        for conflict in errors + warnings:
            icon = ICON_ERROR if conflict.is_error else ICON_WARNING
            rules = ", ".join(f"#{i}" for i in conflict.rule_indices) or "-"
            details = escape(conflict.message)
            for suggestion in conflict.suggestions:
                details += f"\n[dim]→ {escape(suggestion)}[/dim]"
            table.add_row(icon, rules, details)
        console.print(table)

    console.print()
    if errors:
        console.print(
            f"{ICON_ERROR} [red]{len(errors)} error(s)[/red], {len(warnings)} warning(s)"
        )
    elif warnings:
        console.print(f"{ICON_OK} Valid with [yellow]{len(warnings)} warning(s)[/yellow]")
    else:
        console.print(f"{ICON_OK} [green]No problems found[/green]")


def print_rules(console: Console, policy: PolicyFile) -> None:
    """Print the evaluation order of a policy file."""
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("#", style="dim", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Rule")
    table.add_column("Denies with", style="dim")
    for check in build_checks(policy):
        table.add_row(str(check.index), check.kind.value, check.summary(), str(check.status))
    console.print(table)


def print_simulation_report(
    console: Console,
    result: SimulationResult,
    verbose: bool = False,
) -> None:
    """
    Print a simulation run.

    Args:
        console: Rich Console to print to
        result: Simulator output
        verbose: Show every request, not only denials
    """
    console.print("[bold]Timeline[/bold]")
    console.print()

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("", width=2, justify="center")
    table.add_column("Time", width=12)
    table.add_column("Caller", style="cyan", overflow="fold")
    table.add_column("Amount", justify="right", width=10)
    table.add_column("Details", overflow="fold")

    shown = 0
    for item in result.requests:
        decision = item.decision
        if decision.allowed and not verbose:
            continue
        shown += 1
        context = item.context
        caller = context.agent_id or context.wallet_address or context.ip_address or "-"
        amount = str(context.amount) if context.amount is not None else "-"
        if decision.allowed:
            icon = ICON_OK
            details = "[dim]allowed[/dim]"
        else:
            icon = ICON_DENIED
            details = f"[yellow]{decision.reason.value}[/yellow] {escape(decision.message)}"
            if decision.retry_after is not None:
                details += f"\n[dim]retry after {decision.retry_after.total_seconds():.1f}s[/dim]"
        table.add_row(
            str(item.sequence + 1),
            icon,
            context.timestamp.strftime("%H:%M:%S.%f")[:-3],
            escape(caller),
            amount,
            details,
        )

    if shown:
        console.print(table)
    else:
        console.print("  [dim]No denials[/dim]")
    console.print()

    console.print("[bold]Summary[/bold]")
    console.print()
    stats = Table(show_header=False, box=None, padding=(0, 2))
    stats.add_column("Metric", style="dim")
    stats.add_column("Value")
    stats.add_row("Requests", str(result.total))
    stats.add_row("Allowed", f"[green]{result.allowed}[/green]" if result.allowed else "0")
    stats.add_row("Denied", f"[yellow]{result.denied}[/yellow]" if result.denied else "0")
    for reason, count in sorted(result.by_reason.items(), key=lambda kv: kv[0].value):
        stats.add_row(f"  {reason.value}", str(count))
    for rule, count in result.by_rule.items():
        stats.add_row(f"  rule #{rule}", f"{count} denial(s)")
    stats.add_row("Duration", f"{result.duration_ms:.1f}ms")
    console.print(stats)
