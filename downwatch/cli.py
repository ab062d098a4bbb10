import signal
from pathlib import Path

import typer

from downwatch.monitor import Monitor, StopToken
from downwatch.operations import DEFAULT_CLIENT
from downwatch.report import build_report, load_report
from downwatch.tracker import current_epoch_timestamp, initialize
from downwatch.types import ALL_KINDS, ResourceKind, TrackedState
from downwatch.ui import (
    print_error,
    print_run_summary,
    print_step,
    print_success,
    print_warning,
    render_downtime_table,
)

DEFAULT_NAMESPACE_PREFIX = "redhat-rhmi-"
DEFAULT_OUTPUT = "downtime.json"

app = typer.Typer()


def initialize_handler(
    prefix: str,
    kinds: list[ResourceKind],
    client: str,
    timeout: float | None,
    include_scaled_down: bool,
) -> TrackedState:
    try:
        return initialize(
            prefix,
            kinds=kinds,
            client=client,
            timeout=timeout,
            include_scaled_down=include_scaled_down,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        print_warning("Interrupted before monitoring started, no report written")
        raise typer.Exit(code=130)


def install_stop_handlers(stop: StopToken):
    # Only set the flag here; the loop reports the stop itself
    def _handler(signum, frame):
        stop.request_stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@app.command(help="Monitor namespaces and record downtime until interrupted.")
def monitor(
    prefix: str = typer.Option(
        DEFAULT_NAMESPACE_PREFIX,
        "--prefix",
        "-p",
        envvar="NAMESPACE_PREFIX",
        help="Only namespaces starting with this prefix are monitored.",
    ),
    output: Path = typer.Option(
        DEFAULT_OUTPUT,
        "--output",
        "-o",
        envvar="DOWNWATCH_OUTPUT",
        help="File the downtime report is written to after every poll.",
    ),
    client: str = typer.Option(
        DEFAULT_CLIENT,
        "--client",
        envvar="DOWNWATCH_CLIENT",
        help="CLI used to query the cluster (oc or kubectl).",
    ),
    kinds: list[ResourceKind] = typer.Option(
        None,
        "--kind",
        "-k",
        help="Resource kinds to monitor. Repeat to select several.",
    ),
    query_timeout: float = typer.Option(
        None,
        "--query-timeout",
        help="Seconds before a single cluster query is abandoned and counted as failed.",
    ),
    interval: float = typer.Option(
        0.0,
        "--interval",
        help="Seconds to wait between polls. 0 polls back to back.",
    ),
    include_scaled_down: bool = typer.Option(
        False,
        "--include-scaled-down",
        help="Also track resources scaled to zero replicas at startup.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Report every poll."),
):
    kinds = kinds or list(ALL_KINDS)
    print_step(
        f"Getting initial list of namespaces starting with [cyan]{prefix}[/cyan]..."
    )
    state = initialize_handler(prefix, kinds, client, query_timeout, include_scaled_down)
    resource_count = sum(1 for _ in state.iter_resources())
    print_success(
        f"Monitoring {resource_count} resource(s) in {len(state.namespaces)} namespace(s)"
    )
    typer.echo("Press Ctrl+C to stop monitoring and write the final report.")

    stop = StopToken()
    install_stop_handlers(stop)

    Monitor(
        state,
        output,
        stop,
        kinds=kinds,
        client=client,
        timeout=query_timeout,
        interval=interval,
        verbose=verbose,
    ).run()

    print_run_summary(build_report(state, current_epoch_timestamp()))


@app.command(help="Show the downtime recorded in a report file.")
def summary(
    report_path: Path = typer.Argument(
        DEFAULT_OUTPUT, help="Downtime report written by the monitor command."
    ),
    resources: bool = typer.Option(
        True, "--resources/--no-resources", help="Include per-resource rows."
    ),
):
    try:
        report = load_report(report_path)
    except (OSError, ValueError) as e:
        print_error(f"Unable to read report: {e}")
        raise typer.Exit(code=1)

    render_downtime_table(report, show_resources=resources)
    print_run_summary(report)


if __name__ == "__main__":
    app()
