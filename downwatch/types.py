"""Type definitions for downwatch."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ResourceKind(Enum):
    DEPLOYMENT_CONFIG = "deploymentconfig"
    DEPLOYMENT = "deployment"
    STATEFUL_SET = "statefulset"

    @property
    def cli_name(self) -> str:
        """Resource name passed to `oc get` / `kubectl get`."""
        return self.value

    @property
    def report_key(self) -> str:
        return _REPORT_KEYS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_REPORT_KEYS = {
    ResourceKind.DEPLOYMENT_CONFIG: "dcs",
    ResourceKind.DEPLOYMENT: "deployments",
    ResourceKind.STATEFUL_SET: "statefulsets",
}

_DISPLAY_NAMES = {
    ResourceKind.DEPLOYMENT_CONFIG: "DeploymentConfig",
    ResourceKind.DEPLOYMENT: "Deployment",
    ResourceKind.STATEFUL_SET: "StatefulSet",
}

ALL_KINDS: tuple[ResourceKind, ...] = tuple(ResourceKind)


@dataclass
class ResourceRecord:
    kind: ResourceKind
    name: str
    namespace: str
    ready_count: int
    desired_count: int

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    @property
    def is_ready(self) -> bool:
        return self.ready_count > 0


class QueryStatus(Enum):
    OK = "ok"
    EMPTY = "empty"  # query succeeded, nothing matched
    FAILED = "failed"  # inconclusive, must not be read as downtime


@dataclass
class QueryResult:
    status: QueryStatus
    records: list[Any] = field(default_factory=list)
    # (namespace, name) of records whose line could not be parsed
    inconclusive: set[tuple[str, str]] = field(default_factory=set)
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.status is QueryStatus.FAILED


@dataclass
class ObservedSnapshot:
    results: dict[ResourceKind, QueryResult]
    namespaces: QueryResult | None = None

    @property
    def all_failed(self) -> bool:
        return all(result.failed for result in self.results.values())

    def failed_kinds(self) -> list[ResourceKind]:
        return [kind for kind, result in self.results.items() if result.failed]


@dataclass
class DowntimeInterval:
    start: int
    end: int | None = None  # None while the downtime is still ongoing

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> int:
        """Length in seconds; open intervals count as zero."""
        if self.end is None:
            return 0
        return self.end - self.start


@dataclass
class TrackedResource:
    kind: ResourceKind
    name: str
    namespace: str
    desired_count: int = 0
    downtimes: list[DowntimeInterval] = field(default_factory=list)
    downtime_seconds: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    @property
    def is_down(self) -> bool:
        return bool(self.downtimes) and self.downtimes[-1].is_open


@dataclass
class TrackedNamespace:
    name: str
    resources: list[TrackedResource] = field(default_factory=list)
    downtimes: list[DowntimeInterval] = field(default_factory=list)
    downtime_seconds: int = 0

    @property
    def is_down(self) -> bool:
        return bool(self.downtimes) and self.downtimes[-1].is_open

    def resources_of(self, kind: ResourceKind) -> list[TrackedResource]:
        return [r for r in self.resources if r.kind is kind]


@dataclass
class TrackedState:
    prefix: str
    started_at: int
    namespaces: list[TrackedNamespace] = field(default_factory=list)

    def iter_resources(self):
        for namespace in self.namespaces:
            yield from namespace.resources


@dataclass
class RunReport:
    namespaces: list[TrackedNamespace]
    start: int
    end: int
