"""Downtime report rendering and persistence."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from downwatch.types import (
    DowntimeInterval,
    ResourceKind,
    RunReport,
    TrackedNamespace,
    TrackedResource,
    TrackedState,
)

# Written in place of an end timestamp while a downtime is still ongoing
OPEN_END = 0


def build_report(state: TrackedState, now: int) -> RunReport:
    return RunReport(namespaces=state.namespaces, start=state.started_at, end=now)


# ===== Serialization =====


def _interval_to_dict(interval: DowntimeInterval) -> dict[str, int]:
    end = OPEN_END if interval.end is None else interval.end
    return {"start": interval.start, "end": end}


def _resource_to_dict(resource: TrackedResource) -> dict[str, Any]:
    return {
        "name": resource.name,
        "namespace": resource.namespace,
        "kind": resource.kind.display_name,
        "expected": resource.desired_count,
        "downtimes": [_interval_to_dict(i) for i in resource.downtimes],
        "downtimeInSeconds": resource.downtime_seconds,
    }


def _namespace_to_dict(namespace: TrackedNamespace) -> dict[str, Any]:
    data: dict[str, Any] = {"name": namespace.name}
    for kind in ResourceKind:
        data[kind.report_key] = [
            _resource_to_dict(r) for r in namespace.resources_of(kind)
        ]
    data["downtimes"] = [_interval_to_dict(i) for i in namespace.downtimes]
    data["downtimeInSeconds"] = namespace.downtime_seconds
    return data


def report_to_dict(report: RunReport) -> dict[str, Any]:
    return {
        "namespaces": [_namespace_to_dict(ns) for ns in report.namespaces],
        "start": report.start,
        "end": report.end,
    }


# ===== Deserialization =====


def _interval_from_dict(data: dict[str, Any]) -> DowntimeInterval:
    end = data.get("end", OPEN_END)
    return DowntimeInterval(start=int(data["start"]), end=None if end == OPEN_END else int(end))


def _namespace_from_dict(data: dict[str, Any]) -> TrackedNamespace:
    namespace = TrackedNamespace(
        name=data["name"],
        downtimes=[_interval_from_dict(i) for i in data.get("downtimes", [])],
        downtime_seconds=int(data.get("downtimeInSeconds", 0)),
    )
    for kind in ResourceKind:
        for item in data.get(kind.report_key, []):
            namespace.resources.append(
                TrackedResource(
                    kind=kind,
                    name=item["name"],
                    namespace=item.get("namespace", namespace.name),
                    desired_count=int(item.get("expected", 0)),
                    downtimes=[_interval_from_dict(i) for i in item.get("downtimes", [])],
                    downtime_seconds=int(item.get("downtimeInSeconds", 0)),
                )
            )
    return namespace


def report_from_dict(data: dict[str, Any]) -> RunReport:
    return RunReport(
        namespaces=[_namespace_from_dict(ns) for ns in data.get("namespaces", [])],
        start=int(data["start"]),
        end=int(data["end"]),
    )


# ===== File I/O =====


def write_report(report: RunReport, path: str | Path) -> None:
    """Re-render the whole report and atomically replace the file at path."""
    path = Path(path)
    content = json.dumps(report_to_dict(report), indent=2)

    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_report(path: str | Path) -> RunReport:
    with open(path, "r") as f:
        data = json.load(f)
    try:
        return report_from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"'{path}' is not a downtime report: {e}") from e
