"""Downtime tracking for namespaces and their workload resources."""

import time
from typing import Iterable

from downwatch.operations import DEFAULT_CLIENT, take_snapshot
from downwatch.types import (
    ALL_KINDS,
    DowntimeInterval,
    ObservedSnapshot,
    ResourceKind,
    ResourceRecord,
    TrackedNamespace,
    TrackedResource,
    TrackedState,
)


def current_epoch_timestamp() -> int:
    return int(time.time())


# ===== Interval bookkeeping =====


def _mark_down(downtimes: list[DowntimeInterval], now: int) -> None:
    # A still-open interval already covers this observation
    if downtimes and downtimes[-1].is_open:
        return
    downtimes.append(DowntimeInterval(start=now))


def _mark_up(downtimes: list[DowntimeInterval], now: int) -> None:
    if downtimes and downtimes[-1].is_open:
        downtimes[-1].end = now


def _apply(downtimes: list[DowntimeInterval], is_ready: bool, now: int) -> None:
    if is_ready:
        _mark_up(downtimes, now)
    else:
        _mark_down(downtimes, now)


def _total(downtimes: list[DowntimeInterval]) -> int:
    return sum(interval.duration for interval in downtimes if not interval.is_open)


# ===== Initialization =====


def build_tracked_state(
    snapshot: ObservedSnapshot,
    prefix: str,
    now: int,
    include_scaled_down: bool = False,
) -> TrackedState:
    """Build the tracked namespace/resource set from a startup snapshot.

    Resources scaled to zero replicas are not expected to be running and are left
    out unless include_scaled_down is set.
    """
    if snapshot.namespaces is None or snapshot.namespaces.failed:
        error = snapshot.namespaces.error if snapshot.namespaces else "not queried"
        raise ValueError(f"Unable to list namespaces with prefix '{prefix}': {error}")

    failed = snapshot.failed_kinds()
    if failed:
        details = "; ".join(
            f"{kind.display_name}: {snapshot.results[kind].error}" for kind in failed
        )
        raise ValueError(f"Unable to list resources ({details})")

    namespaces = {name: TrackedNamespace(name=name) for name in snapshot.namespaces.records}

    for kind, result in snapshot.results.items():
        for record in result.records:
            namespace = namespaces.get(record.namespace)
            if namespace is None:
                continue
            if record.desired_count == 0 and not include_scaled_down:
                continue
            namespace.resources.append(
                TrackedResource(
                    kind=kind,
                    name=record.name,
                    namespace=record.namespace,
                    desired_count=record.desired_count,
                )
            )

    kind_order = {kind: idx for idx, kind in enumerate(ResourceKind)}
    for namespace in namespaces.values():
        namespace.resources.sort(key=lambda r: kind_order[r.kind])

    return TrackedState(prefix=prefix, started_at=now, namespaces=list(namespaces.values()))


def initialize(
    prefix: str,
    kinds: Iterable[ResourceKind] = ALL_KINDS,
    client: str = DEFAULT_CLIENT,
    timeout: float | None = None,
    now: int | None = None,
    include_scaled_down: bool = False,
) -> TrackedState:
    snapshot = take_snapshot(
        prefix, kinds=kinds, client=client, timeout=timeout, include_namespaces=True
    )
    if now is None:
        now = current_epoch_timestamp()
    return build_tracked_state(
        snapshot, prefix, now, include_scaled_down=include_scaled_down
    )


# ===== Reconciliation =====


def _index(snapshot: ObservedSnapshot) -> dict[ResourceKind, dict[tuple[str, str], ResourceRecord]]:
    return {
        kind: {record.key: record for record in result.records}
        for kind, result in snapshot.results.items()
        if not result.failed
    }


def reconcile(state: TrackedState, snapshot: ObservedSnapshot, now: int) -> TrackedState:
    """Fold one snapshot into the tracked state.

    A resource is unready when it is missing from a successful listing or has no
    ready replicas. Resources whose listing failed, or whose own record was
    malformed, keep their current state. A namespace is up only while none of its
    resources has an open downtime.
    """
    index = _index(snapshot)

    for namespace in state.namespaces:
        for resource in namespace.resources:
            records = index.get(resource.kind)
            if records is None:
                continue
            if resource.key in snapshot.results[resource.kind].inconclusive:
                continue

            record = records.get(resource.key)
            is_ready = record is not None and record.is_ready
            _apply(resource.downtimes, is_ready, now)

        namespace_ready = not any(r.is_down for r in namespace.resources)
        _apply(namespace.downtimes, namespace_ready, now)

    return state


def finalize(state: TrackedState, now: int) -> TrackedState:
    """Close every open interval at `now`. Safe to call more than once."""
    for namespace in state.namespaces:
        for resource in namespace.resources:
            _mark_up(resource.downtimes, now)
        _mark_up(namespace.downtimes, now)
    return state


def recompute_totals(state: TrackedState) -> TrackedState:
    for namespace in state.namespaces:
        for resource in namespace.resources:
            resource.downtime_seconds = _total(resource.downtimes)
        namespace.downtime_seconds = _total(namespace.downtimes)
    return state


def count_down(state: TrackedState) -> tuple[int, int]:
    """Return (namespaces down, resources down)."""
    namespaces = sum(1 for ns in state.namespaces if ns.is_down)
    resources = sum(1 for r in state.iter_resources() if r.is_down)
    return namespaces, resources
