"""Cluster queries for downwatch."""

import json
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable

from downwatch.types import (
    ALL_KINDS,
    ObservedSnapshot,
    QueryResult,
    QueryStatus,
    ResourceKind,
    ResourceRecord,
)

DEFAULT_CLIENT = "oc"


# ===== Command execution =====


def _run_get(
    client: str, args: list[str], timeout: float | None
) -> tuple[dict[str, Any] | None, str]:
    """Run `<client> get ... -o json`. Returns (parsed_json, error)."""
    cmd = [client, "get"] + args + ["-o", "json"]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=False, timeout=timeout
        )
    except subprocess.TimeoutExpired:
        return None, f"'{' '.join(cmd)}' timed out after {timeout}s"
    except FileNotFoundError:
        return None, f"'{client}' not found on PATH"

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        return None, f"'{' '.join(cmd)}' exited with {result.returncode}: {stderr}"

    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        return None, f"unexpected output from '{' '.join(cmd)}': {e}"

    if not isinstance(payload, dict) or not isinstance(payload.get("items", []), list):
        return None, f"unexpected output from '{' '.join(cmd)}'"
    return payload, ""


def _to_count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid replica count: {value!r}")
    count = int(value)
    if count < 0:
        raise ValueError(f"invalid replica count: {value!r}")
    return count


def _section(item: dict[str, Any], key: str) -> dict[str, Any]:
    section = item.get(key, {})
    if not isinstance(section, dict):
        raise TypeError(f"'{key}' is not an object: {section!r}")
    return section


def replica_counts(item: dict[str, Any]) -> tuple[int, int]:
    """Return (ready, desired) replicas of a listed workload.

    DeploymentConfigs, Deployments and StatefulSets all report these as
    status.readyReplicas and spec.replicas, so one lookup serves every kind.
    """
    # The API server omits readyReplicas entirely when it is zero
    ready = _to_count(_section(item, "status").get("readyReplicas", 0))
    desired = _to_count(_section(item, "spec").get("replicas", 1))
    return ready, desired


def _identity(item: Any, *keys: str) -> tuple[str, ...]:
    """Read metadata.name plus the given metadata keys; "" for anything not a string."""
    metadata = item.get("metadata") if isinstance(item, dict) else None
    if not isinstance(metadata, dict):
        metadata = {}
    values = [metadata.get("name")] + [metadata.get(key) for key in keys]
    return tuple(value if isinstance(value, str) else "" for value in values)


# ===== Resource listing =====


def parse_resource_items(
    kind: ResourceKind, items: list[dict[str, Any]], prefix: str
) -> QueryResult:
    """Turn listed items into records, keeping namespaces that start with prefix.

    Items with a malformed status or spec are reported as inconclusive rather
    than as records. An item without a name or namespace cannot be attributed to
    anything, so the whole listing is treated as failed.
    """
    records: list[ResourceRecord] = []
    inconclusive: set[tuple[str, str]] = set()

    for item in items:
        name, namespace = _identity(item, "namespace")
        if not name or not namespace:
            return QueryResult(
                QueryStatus.FAILED,
                error=f"{kind.display_name} listing contained an item without identity",
            )
        if not namespace.startswith(prefix):
            continue

        try:
            ready, desired = replica_counts(item)
        except (TypeError, ValueError, OverflowError):
            inconclusive.add((namespace, name))
            continue

        records.append(
            ResourceRecord(
                kind=kind,
                name=name,
                namespace=namespace,
                ready_count=ready,
                desired_count=desired,
            )
        )

    if not records and not inconclusive:
        return QueryResult(QueryStatus.EMPTY)
    return QueryResult(QueryStatus.OK, records=records, inconclusive=inconclusive)


def list_resources(
    kind: ResourceKind,
    prefix: str,
    client: str = DEFAULT_CLIENT,
    timeout: float | None = None,
) -> QueryResult:
    payload, error = _run_get(client, [kind.cli_name, "--all-namespaces"], timeout)
    if payload is None:
        return QueryResult(QueryStatus.FAILED, error=error)
    return parse_resource_items(kind, payload.get("items", []), prefix)


def list_namespaces(
    prefix: str, client: str = DEFAULT_CLIENT, timeout: float | None = None
) -> QueryResult:
    payload, error = _run_get(client, ["namespaces"], timeout)
    if payload is None:
        return QueryResult(QueryStatus.FAILED, error=error)

    names = []
    for item in payload.get("items", []):
        name = _identity(item)[0]
        if not name:
            return QueryResult(
                QueryStatus.FAILED, error="namespace listing contained an item without a name"
            )
        if name.startswith(prefix):
            names.append(name)

    if not names:
        return QueryResult(QueryStatus.EMPTY)
    return QueryResult(QueryStatus.OK, records=names)


# ===== Snapshots =====


def take_snapshot(
    prefix: str,
    kinds: Iterable[ResourceKind] = ALL_KINDS,
    client: str = DEFAULT_CLIENT,
    timeout: float | None = None,
    include_namespaces: bool = False,
) -> ObservedSnapshot:
    """Query every kind concurrently and wait for all of them to finish."""
    kinds = list(kinds)
    with ThreadPoolExecutor(max_workers=len(kinds) + 1) as ex:
        futures = {
            kind: ex.submit(list_resources, kind, prefix, client, timeout)
            for kind in kinds
        }
        namespaces_future = (
            ex.submit(list_namespaces, prefix, client, timeout)
            if include_namespaces
            else None
        )
        results = {kind: future.result() for kind, future in futures.items()}
        namespaces = namespaces_future.result() if namespaces_future else None

    return ObservedSnapshot(results=results, namespaces=namespaces)
