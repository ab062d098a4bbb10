import os
from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from downwatch.types import RunReport

# Global consoles for UI functions
_console = Console()
_err_console = Console(stderr=True)

# Check if we should use simple UI (e.g., when output is captured by CI logs)
_use_simple_ui = os.getenv("DOWNWATCH_SIMPLE_UI") == "1"


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(
        "%Y-%m-%d %H:%M:%S UTC"
    )


def render_downtime_table(report: RunReport, show_resources: bool = True):
    table = Table()

    table.add_column("Namespace", style="magenta", no_wrap=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Kind", style="dim")
    table.add_column("Intervals", justify="right")
    table.add_column("Downtime", style="red", justify="right")
    table.add_column("Status", style="green")

    for namespace in report.namespaces:
        status = "[red]DOWN[/red]" if namespace.is_down else "[green]UP[/green]"
        table.add_row(
            namespace.name,
            "",
            "",
            str(len(namespace.downtimes)),
            format_duration(namespace.downtime_seconds),
            status,
        )
        if not show_resources:
            continue

        # Only resources that were ever down are worth a row
        for resource in namespace.resources:
            if not resource.downtimes:
                continue
            table.add_row(
                "",
                resource.name,
                resource.kind.display_name,
                str(len(resource.downtimes)),
                format_duration(resource.downtime_seconds),
                "[red]DOWN[/red]" if resource.is_down else "UP",
            )

    _console.print(table)


def print_run_summary(report: RunReport):
    """Print a summary of the run: its length and the namespaces that saw downtime."""
    affected = [ns for ns in report.namespaces if ns.downtimes]
    lines = [
        f"Run: [cyan]{format_timestamp(report.start)}[/cyan] → [cyan]{format_timestamp(report.end)}[/cyan] "
        f"({format_duration(report.end - report.start)})",
        f"Namespaces tracked: [cyan bold]{len(report.namespaces)}[/cyan bold], "
        f"with downtime: [red bold]{len(affected)}[/red bold]",
    ]
    for namespace in sorted(affected, key=lambda ns: ns.downtime_seconds, reverse=True):
        lines.append(
            f"  [magenta]{namespace.name}[/magenta]: {format_duration(namespace.downtime_seconds)}"
        )

    _console.print()
    if _use_simple_ui:
        _console.print("[green]" + "=" * 30 + " Downtime summary " + "=" * 30 + "[/green]")
        for line in lines:
            _console.print(line)
        _console.print("[green]" + "=" * 78 + "[/green]")
    else:
        _console.print(
            Panel(
                "\n".join(lines),
                border_style="green" if not affected else "yellow",
                title="Downtime summary",
                expand=False,
            )
        )


def print_success(message: str, prefix: str = "✅"):
    """Print a success message."""
    _console.print(f"[green]{prefix}[/green] {message}")


def print_info(message: str, prefix: str = "ℹ️"):
    """Print an info message."""
    _console.print(f"[blue]{prefix}[/blue]  {message}")


def print_step(message: str, prefix: str = "🔧"):
    """Print a step/progress message."""
    _console.print(f"[cyan]{prefix}[/cyan] {message}")


def print_warning(message: str, prefix: str = "⚠️"):
    _err_console.print(f"[yellow]{prefix}[/yellow]  {message}")


def print_error(message: str, prefix: str = "❌"):
    _err_console.print(f"[red]{prefix}[/red] {message}")
