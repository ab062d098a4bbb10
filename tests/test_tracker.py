"""Tests for tracker module - downtime interval state machine."""

import copy
from unittest.mock import MagicMock, patch

import pytest

from downwatch.tracker import (
    build_tracked_state,
    count_down,
    finalize,
    initialize,
    recompute_totals,
    reconcile,
)
from downwatch.types import (
    DowntimeInterval,
    ObservedSnapshot,
    QueryResult,
    QueryStatus,
    ResourceKind,
    ResourceRecord,
    TrackedNamespace,
    TrackedResource,
    TrackedState,
)

DC = ResourceKind.DEPLOYMENT_CONFIG
DEPLOY = ResourceKind.DEPLOYMENT
STS = ResourceKind.STATEFUL_SET


def record(kind, name, namespace, ready=1, desired=1):
    return ResourceRecord(kind, name, namespace, ready, desired)


def snapshot(*records, failed=(), empty=(), inconclusive=None, namespaces=None):
    """Build a snapshot covering all three kinds from the given records."""
    results = {}
    for kind in ResourceKind:
        if kind in failed:
            results[kind] = QueryResult(QueryStatus.FAILED, error="boom")
            continue
        kind_records = [r for r in records if r.kind is kind]
        if kind in empty or not kind_records:
            results[kind] = QueryResult(QueryStatus.EMPTY)
        else:
            results[kind] = QueryResult(QueryStatus.OK, records=kind_records)
    for kind, keys in (inconclusive or {}).items():
        results[kind].inconclusive = set(keys)
    ns_result = None
    if namespaces is not None:
        ns_result = QueryResult(QueryStatus.OK, records=list(namespaces))
    return ObservedSnapshot(results=results, namespaces=ns_result)


def make_state(*resources, empty_namespaces=()):
    namespaces: dict[str, TrackedNamespace] = {}
    for kind, name, ns in resources:
        namespaces.setdefault(ns, TrackedNamespace(name=ns)).resources.append(
            TrackedResource(kind=kind, name=name, namespace=ns, desired_count=1)
        )
    for ns in empty_namespaces:
        namespaces[ns] = TrackedNamespace(name=ns)
    return TrackedState(prefix="app-", started_at=0, namespaces=list(namespaces.values()))


def assert_well_formed(downtimes: list[DowntimeInterval]):
    for idx, interval in enumerate(downtimes):
        if interval.is_open:
            assert idx == len(downtimes) - 1, "only the last interval may be open"
        else:
            assert interval.end >= interval.start
        if idx > 0:
            previous = downtimes[idx - 1]
            assert not previous.is_open
            assert previous.end <= interval.start


class TestBuildTrackedState:
    """Tests for build_tracked_state - initial tracked set."""

    def test_groups_resources_by_namespace_and_kind(self):
        snap = snapshot(
            record(STS, "keycloak", "app-sso"),
            record(DEPLOY, "operator", "app-sso"),
            record(DC, "apicast", "app-3scale"),
            namespaces=["app-sso", "app-3scale"],
        )

        state = build_tracked_state(snap, "app-", now=10)

        assert state.started_at == 10
        assert [ns.name for ns in state.namespaces] == ["app-sso", "app-3scale"]
        sso = state.namespaces[0]
        assert [(r.kind, r.name) for r in sso.resources] == [
            (DEPLOY, "operator"),
            (STS, "keycloak"),
        ]
        assert all(not r.downtimes for r in state.iter_resources())

    def test_namespace_without_resources_is_tracked(self):
        snap = snapshot(namespaces=["app-empty"])

        state = build_tracked_state(snap, "app-", now=0)

        assert len(state.namespaces) == 1
        assert state.namespaces[0].resources == []

    def test_resources_outside_tracked_namespaces_are_ignored(self):
        snap = snapshot(record(DEPLOY, "web", "app-other"), namespaces=["app-a"])

        state = build_tracked_state(snap, "app-", now=0)

        assert state.namespaces[0].resources == []

    def test_scaled_down_resources_skipped_by_default(self):
        snap = snapshot(
            record(DC, "backend-cron", "app-a", ready=0, desired=0),
            record(DC, "apicast", "app-a", ready=2, desired=2),
            namespaces=["app-a"],
        )

        state = build_tracked_state(snap, "app-", now=0)
        assert [r.name for r in state.namespaces[0].resources] == ["apicast"]

        state = build_tracked_state(snap, "app-", now=0, include_scaled_down=True)
        assert [r.name for r in state.namespaces[0].resources] == [
            "backend-cron",
            "apicast",
        ]

    def test_failed_namespace_listing_raises_error(self):
        snap = snapshot()
        snap.namespaces = QueryResult(QueryStatus.FAILED, error="forbidden")

        with pytest.raises(ValueError, match="Unable to list namespaces"):
            build_tracked_state(snap, "app-", now=0)

    def test_failed_kind_listing_raises_error(self):
        snap = snapshot(failed=(DC,), namespaces=["app-a"])

        with pytest.raises(ValueError, match="DeploymentConfig: boom"):
            build_tracked_state(snap, "app-", now=0)


class TestInitialize:
    """Tests for initialize - takes one snapshot including namespaces."""

    @patch("downwatch.tracker.take_snapshot")
    def test_initialize_queries_namespaces(self, mock_snapshot: MagicMock):
        mock_snapshot.return_value = snapshot(
            record(DEPLOY, "web", "app-a"), namespaces=["app-a"]
        )

        state = initialize("app-", kinds=[DEPLOY], client="kubectl", now=42)

        mock_snapshot.assert_called_once_with(
            "app-", kinds=[DEPLOY], client="kubectl", timeout=None, include_namespaces=True
        )
        assert state.prefix == "app-"
        assert state.started_at == 42
        assert state.namespaces[0].resources[0].name == "web"


class TestReconcile:
    """Tests for reconcile - opening and closing downtime intervals."""

    def test_ready_resource_records_nothing(self):
        state = make_state((DEPLOY, "web", "app-a"))

        for now in (10, 20, 30):
            reconcile(state, snapshot(record(DEPLOY, "web", "app-a")), now)
        recompute_totals(state)

        resource = state.namespaces[0].resources[0]
        assert resource.downtimes == []
        assert resource.downtime_seconds == 0
        assert state.namespaces[0].downtimes == []

    def test_down_then_up_produces_single_closed_interval(self):
        """Unready at 100, still unready at 130, ready again at 150."""
        state = make_state((DEPLOY, "web", "app-a"))
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a")), 50)

        reconcile(state, snapshot(record(DEPLOY, "web", "app-a", ready=0)), 100)
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a", ready=0)), 130)
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a")), 150)
        recompute_totals(state)

        resource = state.namespaces[0].resources[0]
        assert resource.downtimes == [DowntimeInterval(100, 150)]
        assert resource.downtime_seconds == 50
        assert state.namespaces[0].downtimes == [DowntimeInterval(100, 150)]
        assert state.namespaces[0].downtime_seconds == 50

    def test_missing_resource_counts_as_down(self):
        state = make_state((DEPLOY, "web", "app-a"), (DEPLOY, "api", "app-a"))

        reconcile(state, snapshot(record(DEPLOY, "api", "app-a")), 60)

        web, api = state.namespaces[0].resources
        assert web.downtimes == [DowntimeInterval(60)]
        assert api.downtimes == []

    def test_failed_query_leaves_open_interval_untouched(self):
        """Unready since 100; the listing fails at 200."""
        state = make_state((DEPLOY, "web", "app-a"))
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a", ready=0)), 100)

        reconcile(state, snapshot(failed=(DEPLOY,)), 200)
        recompute_totals(state)

        resource = state.namespaces[0].resources[0]
        assert resource.downtimes == [DowntimeInterval(100)]
        assert resource.downtime_seconds == 0
        assert state.namespaces[0].downtimes == [DowntimeInterval(100)]

    def test_failed_query_does_not_open_interval(self):
        state = make_state((DEPLOY, "web", "app-a"))

        reconcile(state, snapshot(failed=(DEPLOY,)), 200)

        assert state.namespaces[0].resources[0].downtimes == []
        assert state.namespaces[0].downtimes == []

    def test_failed_query_only_affects_its_kind(self):
        state = make_state((DEPLOY, "web", "app-a"), (STS, "db", "app-a"))

        reconcile(state, snapshot(failed=(DEPLOY,)), 200)

        web, db = state.namespaces[0].resources
        assert web.downtimes == []
        assert db.downtimes == [DowntimeInterval(200)]
        assert state.namespaces[0].downtimes == [DowntimeInterval(200)]

    def test_inconclusive_record_is_skipped(self):
        state = make_state((DEPLOY, "web", "app-a"), (DEPLOY, "api", "app-a"))

        reconcile(
            state,
            snapshot(
                record(DEPLOY, "api", "app-a"),
                inconclusive={DEPLOY: [("app-a", "web")]},
            ),
            70,
        )

        web, api = state.namespaces[0].resources
        assert web.downtimes == []
        assert api.downtimes == []

    def test_kind_not_queried_is_skipped(self):
        state = make_state((DC, "apicast", "app-a"))
        snap = ObservedSnapshot(results={DEPLOY: QueryResult(QueryStatus.EMPTY)})

        reconcile(state, snap, 10)

        assert state.namespaces[0].resources[0].downtimes == []
        assert state.namespaces[0].downtimes == []

    def test_namespace_down_when_any_resource_down(self):
        """R1 ready, R2 unready at 50: the namespace goes down at 50."""
        state = make_state((DEPLOY, "r1", "app-a"), (STS, "r2", "app-a"))

        reconcile(
            state,
            snapshot(record(DEPLOY, "r1", "app-a"), record(STS, "r2", "app-a", ready=0)),
            50,
        )

        namespace = state.namespaces[0]
        assert namespace.downtimes == [DowntimeInterval(50)]
        assert namespace.is_down
        assert not namespace.resources[0].is_down
        assert namespace.resources[1].is_down

    def test_namespace_stays_down_until_every_resource_recovers(self):
        state = make_state((DEPLOY, "r1", "app-a"), (STS, "r2", "app-a"))

        reconcile(state, snapshot(), 10)
        reconcile(state, snapshot(record(DEPLOY, "r1", "app-a")), 20)
        assert state.namespaces[0].is_down

        reconcile(state, snapshot(record(DEPLOY, "r1", "app-a"), record(STS, "r2", "app-a")), 35)
        recompute_totals(state)

        namespace = state.namespaces[0]
        assert namespace.downtimes == [DowntimeInterval(10, 35)]
        assert namespace.resources[0].downtimes == [DowntimeInterval(10, 20)]
        assert namespace.resources[1].downtimes == [DowntimeInterval(10, 35)]

    def test_namespace_without_resources_is_always_up(self):
        state = make_state(empty_namespaces=["app-empty"])

        reconcile(state, snapshot(), 10)
        reconcile(state, snapshot(failed=tuple(ResourceKind)), 20)

        assert state.namespaces[0].downtimes == []
        assert not state.namespaces[0].is_down

    def test_confirmed_empty_marks_everything_down(self):
        """An empty listing at 400 takes down every previously tracked resource."""
        state = make_state(
            (DC, "apicast", "app-a"), (DEPLOY, "web", "app-a"), (STS, "db", "app-b")
        )
        reconcile(
            state,
            snapshot(
                record(DC, "apicast", "app-a"),
                record(DEPLOY, "web", "app-a"),
                record(STS, "db", "app-b"),
            ),
            300,
        )

        reconcile(state, snapshot(empty=tuple(ResourceKind)), 400)

        for resource in state.iter_resources():
            assert resource.downtimes == [DowntimeInterval(400)]
        for namespace in state.namespaces:
            assert namespace.downtimes == [DowntimeInterval(400)]
        assert count_down(state) == (2, 3)

    def test_repeated_outages_stay_ordered(self):
        state = make_state((DEPLOY, "web", "app-a"))
        readiness = [1, 0, 0, 1, 1, 0, 1, 0]

        for idx, ready in enumerate(readiness):
            reconcile(state, snapshot(record(DEPLOY, "web", "app-a", ready=ready)), idx * 10)
        recompute_totals(state)

        resource = state.namespaces[0].resources[0]
        assert resource.downtimes == [
            DowntimeInterval(10, 30),
            DowntimeInterval(50, 60),
            DowntimeInterval(70),
        ]
        assert resource.downtime_seconds == 30
        assert_well_formed(resource.downtimes)
        assert_well_formed(state.namespaces[0].downtimes)


class TestFinalize:
    """Tests for finalize - closing open intervals at shutdown."""

    def test_closes_open_interval_at_stop_time(self):
        """Unready since 100, stopped at 300."""
        state = make_state((DEPLOY, "web", "app-a"))
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a", ready=0)), 100)

        finalize(state, 300)
        recompute_totals(state)

        resource = state.namespaces[0].resources[0]
        assert resource.downtimes == [DowntimeInterval(100, 300)]
        assert resource.downtime_seconds == 200
        assert state.namespaces[0].downtimes == [DowntimeInterval(100, 300)]
        assert state.namespaces[0].downtime_seconds == 200

    def test_finalize_is_idempotent(self):
        state = make_state((DEPLOY, "web", "app-a"), (STS, "db", "app-a"))
        reconcile(state, snapshot(record(STS, "db", "app-a")), 100)

        finalize(state, 300)
        recompute_totals(state)
        once = copy.deepcopy(state)

        finalize(state, 500)
        recompute_totals(state)

        assert state == once

    def test_closed_intervals_are_not_touched(self):
        state = make_state((DEPLOY, "web", "app-a"))
        reconcile(state, snapshot(), 10)
        reconcile(state, snapshot(record(DEPLOY, "web", "app-a")), 20)

        finalize(state, 99)

        assert state.namespaces[0].resources[0].downtimes == [DowntimeInterval(10, 20)]


class TestRecomputeTotals:
    """Tests for recompute_totals - closed intervals only."""

    def test_open_interval_contributes_nothing(self):
        state = make_state((DEPLOY, "web", "app-a"))
        resource = state.namespaces[0].resources[0]
        resource.downtimes = [
            DowntimeInterval(0, 15),
            DowntimeInterval(20, 45),
            DowntimeInterval(60),
        ]

        recompute_totals(state)

        assert resource.downtime_seconds == 40

    def test_totals_are_recomputed_not_accumulated(self):
        state = make_state((DEPLOY, "web", "app-a"))
        state.namespaces[0].resources[0].downtimes = [DowntimeInterval(0, 10)]

        recompute_totals(state)
        recompute_totals(state)

        assert state.namespaces[0].resources[0].downtime_seconds == 10
