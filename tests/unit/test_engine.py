# ABOUTME: End-to-end scenarios for the engine session over an in-memory cluster
# ABOUTME: Fresh cluster, sync round trip, RBAC-denied list, terminal invalidation

import pytest

from argocd_sync.config import EngineSettings
from argocd_sync.engine import ArgoCDEngine
from argocd_sync.errors import ErrorKind, classify
from argocd_sync.models import OperationOutcome, OperationPhase
from argocd_sync.repository import list_key
from argocd_sync.utils.client import ResourceKind

OLD_START = "2026-01-15T10:00:00Z"
NEW_START = "2026-01-15T10:29:00Z"


def track_phases(executor, app_payload, *sequence):
    executor.on_query(
        ResourceKind.APPLICATION,
        *[app_payload(phase=p) for p in sequence],
        namespace="argocd",
        name="guestbook",
    )


def sync_phases(executor, app_payload, before, *sequence):
    """Queue the snapshot fetched before the patch, then the tracked phases."""
    executor.on_query(
        ResourceKind.APPLICATION,
        app_payload(phase=before, started_at=OLD_START),
        *[app_payload(phase=p, started_at=NEW_START) for p in sequence],
        namespace="argocd",
        name="guestbook",
    )


@pytest.mark.unit
class TestScenarios:
    async def test_fresh_cluster(self, engine, executor):
        """Test that a cluster without ArgoCD lists nothing and queries no applications."""
        status = await engine.detector.resolve("prod")

        assert status.installed is False
        assert status.namespace is None
        assert await engine.applications("prod") == []
        assert executor.query_count(ResourceKind.APPLICATION) == 0

    async def test_sync_round_trip(self, engine, installed_executor, app_payload):
        """Test that list, sync, and track work together and invalidate once."""
        executor = installed_executor
        executor.on_query(ResourceKind.APPLICATION, {"items": [app_payload()]}, namespace="argocd")
        track_phases(executor, app_payload, "Running", "Running", "Succeeded")

        apps = await engine.applications("prod")
        invalidations = []
        original = engine.repository.invalidate
        engine.repository.invalidate = lambda *a: invalidations.append(a) or original(*a)

        await engine.actions.sync(apps[0])
        result = await engine.tracker.track(apps[0])

        assert len(executor.patches) == 1
        assert result.outcome is OperationOutcome.SUCCEEDED
        assert invalidations == [("prod", "argocd")]

    async def test_terminal_outcome_forces_fresh_list(self, engine, installed_executor, app_payload):
        """Test that a finished operation makes the next list hit the cluster."""
        executor = installed_executor
        executor.on_query(ResourceKind.APPLICATION, {"items": [app_payload()]}, namespace="argocd")
        track_phases(executor, app_payload, "Failed")

        await engine.repository.list("prod", "argocd")
        await engine.repository.list("prod", "argocd")
        list_calls = [q for q in executor.queries if q[1] is ResourceKind.APPLICATION and q[3] is None]
        assert len(list_calls) == 1

        result = await engine.tracker.track(engine.parser.parse(app_payload(), "prod"))
        assert result.outcome is OperationOutcome.FAILED

        await engine.repository.list("prod", "argocd")
        list_calls = [q for q in executor.queries if q[1] is ResourceKind.APPLICATION and q[3] is None]
        assert len(list_calls) == 2

    async def test_timeout_issues_no_mutation(self, engine, executor, app_payload):
        """Test that a tracking timeout sends no patch to the cluster."""
        track_phases(executor, app_payload, "Running")

        result = await engine.tracker.track(
            engine.parser.parse(app_payload(), "prod"), timeout_ms=100
        )

        assert result.outcome is OperationOutcome.TIMED_OUT
        assert executor.patches == []

    async def test_rbac_denied_list(self, engine, installed_executor, forbidden_error):
        """Test that a forbidden list yields an empty result."""
        installed_executor.on_query(ResourceKind.APPLICATION, forbidden_error, namespace="argocd")

        apps = await engine.applications("prod")

        assert apps == []
        assert classify(forbidden_error) is ErrorKind.PERMISSION


@pytest.mark.unit
class TestEngine:
    async def test_sync_and_track(self, engine, executor, app_payload):
        """Test that sync_and_track patches once and follows the new operation."""
        sync_phases(executor, app_payload, None, "Running", "Succeeded")
        seen = []

        result = await engine.sync_and_track(
            engine.parser.parse(app_payload(), "prod"), on_phase=seen.append
        )

        assert result.outcome is OperationOutcome.SUCCEEDED
        assert seen == [OperationPhase.RUNNING, OperationPhase.SUCCEEDED]
        assert len(executor.patches) == 1

    async def test_sync_and_track_skips_previous_success(self, engine, executor, app_payload):
        """Test that an earlier successful operation is not reported for a failing sync."""
        executor.on_query(
            ResourceKind.APPLICATION,
            app_payload(phase="Succeeded", started_at=OLD_START),
            app_payload(phase="Succeeded", started_at=OLD_START),
            app_payload(phase="Running", started_at=NEW_START),
            app_payload(phase="Failed", started_at=NEW_START),
            namespace="argocd",
            name="guestbook",
        )

        result = await engine.sync_and_track(engine.parser.parse(app_payload(), "prod"))

        assert result.outcome is OperationOutcome.FAILED
        assert result.final_state.started_at == NEW_START
        assert executor.query_count(ResourceKind.APPLICATION) == 4

    async def test_sync_and_track_follows_running_operation(self, engine, executor, app_payload):
        """Test that an operation already running at sync time is tracked to its end."""
        executor.on_query(
            ResourceKind.APPLICATION,
            app_payload(phase="Running", started_at=OLD_START),
            app_payload(phase="Succeeded", started_at=OLD_START),
            namespace="argocd",
            name="guestbook",
        )

        result = await engine.sync_and_track(engine.parser.parse(app_payload(), "prod"))

        assert result.outcome is OperationOutcome.SUCCEEDED

    async def test_sync_and_track_uses_configured_timeout(self, executor, app_payload, clock, fake_sleep):
        """Test that the engine's timeout applies when the caller passes none."""
        engine = ArgoCDEngine(executor, timeout_ms=6000, clock=clock, sleep=fake_sleep)
        sync_phases(executor, app_payload, "Succeeded", "Running")

        result = await engine.sync_and_track(engine.parser.parse(app_payload(), "prod"))

        assert result.outcome is OperationOutcome.TIMED_OUT
        assert sum(fake_sleep.calls) == pytest.approx(6.0)

    async def test_invalidate_context(self, engine, installed_executor, app_payload):
        """Test that invalidate drops detection and list entries for the context."""
        installed_executor.on_query(ResourceKind.APPLICATION, {"items": [app_payload()]}, namespace="argocd")
        await engine.applications("prod")

        engine.invalidate("prod")

        assert engine.cache.get("detection:prod") is None
        assert engine.cache.get(list_key("prod", "argocd")) is None

    async def test_engines_do_not_share_cache(self, executor, installed_executor):
        """Test that two engines each resolve detection on their own."""
        first = ArgoCDEngine(installed_executor)
        second = ArgoCDEngine(installed_executor)

        await first.detector.resolve("prod")
        await second.detector.resolve("prod")

        assert installed_executor.query_count(ResourceKind.CUSTOM_RESOURCE_DEFINITION) == 2

    def test_from_settings(self, executor):
        """Test that from_settings carries settings into every component."""
        settings = EngineSettings(
            detection_ttl=60,
            application_ttl=5,
            poll_interval=0.5,
            operation_timeout=42,
            operator_namespace="ops",
        )

        engine = ArgoCDEngine.from_settings(executor, settings)

        assert engine.detector._ttl == 60
        assert engine.repository._ttl == 5
        assert engine.tracker._poll_interval == 0.5
        assert engine.tracker.timeout_ms == 42_000
        assert engine.operator_reader.namespaces[0] == "ops"

    async def test_from_settings_operation_timeout(self, executor, app_payload):
        """Test that a short configured operation timeout ends tracking early."""
        settings = EngineSettings(poll_interval=0.01, operation_timeout=0.05)
        engine = ArgoCDEngine.from_settings(executor, settings)
        sync_phases(executor, app_payload, None, "Running")

        result = await engine.sync_and_track(engine.parser.parse(app_payload(), "prod"))

        assert result.outcome is OperationOutcome.TIMED_OUT

    async def test_from_settings_argocd_namespace(self, executor, deployment_payload):
        """Test that the configured ArgoCD namespace fills in a missing one."""
        executor.on_query(
            ResourceKind.CUSTOM_RESOURCE_DEFINITION,
            {"metadata": {"name": "applications.argoproj.io"}},
            name="applications.argoproj.io",
        )
        executor.on_query(ResourceKind.DEPLOYMENT, {"items": [deployment_payload(namespace="")]})
        settings = EngineSettings(argocd_namespace="gitops")

        status = await ArgoCDEngine.from_settings(executor, settings).detector.resolve("prod")

        assert status.installed
        assert status.namespace == "gitops"
