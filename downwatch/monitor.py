"""The polling loop that drives downtime tracking."""

import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from downwatch.operations import DEFAULT_CLIENT, take_snapshot
from downwatch.report import build_report, write_report
from downwatch.tracker import (
    count_down,
    current_epoch_timestamp,
    finalize,
    reconcile,
    recompute_totals,
)
from downwatch.types import ALL_KINDS, ResourceKind, TrackedState
from downwatch.ui import (
    print_error,
    print_info,
    print_step,
    print_success,
    print_warning,
)


class MonitorPhase(Enum):
    RUNNING = "running"
    FINALIZING = "finalizing"
    STOPPED = "stopped"


class StopToken:
    """Cooperative stop flag. Safe to set from a signal handler."""

    def __init__(self):
        self._event = threading.Event()

    def request_stop(self):
        self._event.set()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


def poll_once(
    state: TrackedState,
    kinds: Iterable[ResourceKind] = ALL_KINDS,
    client: str = DEFAULT_CLIENT,
    timeout: float | None = None,
    clock: Callable[[], int] = current_epoch_timestamp,
) -> bool:
    """Take one snapshot and fold it into state.

    Returns False when every listing failed and the poll was skipped.
    """
    snapshot = take_snapshot(state.prefix, kinds=kinds, client=client, timeout=timeout)

    for kind in snapshot.failed_kinds():
        print_warning(
            f"Unable to get {kind.display_name}s: {snapshot.results[kind].error}"
        )
    if snapshot.all_failed:
        return False

    reconcile(state, snapshot, clock())
    recompute_totals(state)
    return True


def write_report_handler(state: TrackedState, output: str | Path, now: int) -> bool:
    try:
        write_report(build_report(state, now), output)
        return True
    except (OSError, TypeError, ValueError) as e:
        print_warning(f"Failed to write report to '{output}': {e}")
        return False


class Monitor:
    """Runs polls back to back until stopped, then closes all open downtimes."""

    def __init__(
        self,
        state: TrackedState,
        output: str | Path,
        stop: StopToken,
        kinds: Iterable[ResourceKind] = ALL_KINDS,
        client: str = DEFAULT_CLIENT,
        timeout: float | None = None,
        interval: float = 0.0,
        verbose: bool = False,
        clock: Callable[[], int] = current_epoch_timestamp,
    ):
        self.state = state
        self.output = output
        self.stop = stop
        self.kinds = list(kinds)
        self.client = client
        self.timeout = timeout
        self.interval = interval
        self.verbose = verbose
        self.clock = clock
        self.phase = MonitorPhase.RUNNING
        self.polls = 0

    def run(self) -> TrackedState:
        while not self.stop.stop_requested:
            self._poll()
            if self.interval > 0:
                self.stop.wait(self.interval)

        print_info("Stop requested, finishing up...")
        self.phase = MonitorPhase.FINALIZING
        self._finalize()
        self.phase = MonitorPhase.STOPPED
        return self.state

    def _poll(self):
        if self.verbose:
            print_step("Getting available deployments, dcs and statefulsets...")

        self.polls += 1
        try:
            applied = poll_once(
                self.state,
                kinds=self.kinds,
                client=self.client,
                timeout=self.timeout,
                clock=self.clock,
            )
        except Exception as e:
            # One bad poll never ends the run
            print_error(f"Poll {self.polls} failed: {e}")
            return
        if not applied:
            print_warning("All listings failed, skipping this poll")
            return

        if self.verbose:
            namespaces_down, resources_down = count_down(self.state)
            print_info(
                f"Poll {self.polls}: {namespaces_down} namespace(s) and "
                f"{resources_down} resource(s) down"
            )
        write_report_handler(self.state, self.output, self.clock())

    def _finalize(self):
        # No new snapshot here, only close what is still open
        now = self.clock()
        finalize(self.state, now)
        recompute_totals(self.state)
        print_step(f"Persisting final downtime report to [cyan]{self.output}[/cyan]...")
        if write_report_handler(self.state, self.output, now):
            print_success(f"Downtime report written to [cyan]{self.output}[/cyan]")
