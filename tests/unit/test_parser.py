# ABOUTME: Unit tests for the Application parser
# ABOUTME: Covers full payloads, malformed blocks, unknown status values, and operations

import dataclasses

import pytest

from argocd_sync.models import (
    HealthStatusCode,
    OperationPhase,
    SyncStatusCode,
)
from argocd_sync.parser import ApplicationParser, parse_application


@pytest.fixture
def parser() -> ApplicationParser:
    return ApplicationParser()


@pytest.mark.unit
class TestParseFullPayload:
    def test_core_fields(self, parser, app_payload):
        """Test that name, project, source and status fields are parsed."""
        app = parser.parse(app_payload(name="guestbook"), context="prod")

        assert app.name == "guestbook"
        assert app.namespace == "argocd"
        assert app.project == "default"
        assert app.context == "prod"
        assert app.source.repo_url == "https://github.com/argoproj/argocd-example-apps.git"
        assert app.source.path == "guestbook"
        assert app.source.target_revision == "HEAD"
        assert app.destination.server == "https://kubernetes.default.svc"
        assert app.destination.namespace == "default"
        assert app.sync_status.code is SyncStatusCode.SYNCED
        assert app.sync_status.revision == "8f3b2c1d9e0a"
        assert app.health_status.code is HealthStatusCode.HEALTHY
        assert app.created_at == "2026-01-01T00:00:00Z"
        assert app.last_operation is None
        assert app.synced_at is None

    def test_ref(self, parser, app_payload):
        """Test that the parsed application exposes its reference."""
        app = parser.parse(app_payload(), context="prod")
        assert app.ref.context == "prod"
        assert app.ref.name == "guestbook"
        assert app.ref.namespace == "argocd"

    def test_resources_and_drift(self, parser, app_payload):
        """Test that resources and out-of-sync drift are parsed."""
        resources = [
            {
                "kind": "Deployment",
                "name": "web",
                "namespace": "default",
                "group": "apps",
                "status": "OutOfSync",
                "health": {"status": "Progressing", "message": "rolling out"},
            },
            {"kind": "Service", "name": "web", "status": "Synced", "health": {"status": "Healthy"}},
            {"kind": "ConfigMap", "name": "old", "status": "OutOfSync", "requiresPruning": True},
        ]
        app = parser.parse(app_payload(sync="OutOfSync", resources=resources))

        assert len(app.resources) == 3
        web = app.resources[0]
        assert web.group == "apps"
        assert web.sync_status is SyncStatusCode.OUT_OF_SYNC
        assert web.health_status is HealthStatusCode.PROGRESSING
        assert web.message == "rolling out"
        assert app.resources[2].requires_pruning is True
        assert app.resources[2].health_status is HealthStatusCode.UNKNOWN
        assert [r.name for r in app.out_of_sync_resources] == ["web", "old"]

    def test_succeeded_operation_sets_synced_at(self, parser, app_payload):
        """Test that a succeeded operation sets the last sync time."""
        app = parser.parse(app_payload(phase="Succeeded"))

        assert app.last_operation.phase is OperationPhase.SUCCEEDED
        assert app.last_operation.is_terminal
        assert app.last_operation.finished_at == "2026-01-15T10:29:30Z"
        assert app.synced_at == "2026-01-15T10:29:30Z"
        assert app.last_operation.sync_result.revision == "8f3b2c1d9e0a"
        assert app.last_operation.sync_result.resources[0].kind == "Deployment"

    def test_failed_operation_has_no_synced_at(self, parser, app_payload):
        """Test that a failed operation leaves the last sync time empty."""
        app = parser.parse(app_payload(phase="Failed", message="one or more objects failed"))

        assert app.last_operation.phase is OperationPhase.FAILED
        assert app.last_operation.message == "one or more objects failed"
        assert app.synced_at is None

    def test_running_operation(self, parser, app_payload):
        """Test that a running operation is parsed as running."""
        app = parser.parse(app_payload(phase="Running"))
        assert app.last_operation.phase is OperationPhase.RUNNING
        assert not app.last_operation.is_terminal
        assert app.last_operation.finished_at is None

    def test_helm_source_and_named_destination(self, parser):
        """Test that Helm sources and named destinations are parsed."""
        raw = {
            "metadata": {"name": "redis"},
            "spec": {
                "source": {"repoURL": "https://charts.bitnami.com", "chart": "redis"},
                "destination": {"name": "in-cluster", "namespace": "cache"},
            },
        }
        app = parser.parse(raw)
        assert app.source.chart == "redis"
        assert app.destination.name == "in-cluster"
        assert app.destination.server == ""

    def test_result_is_frozen(self, parser, app_payload):
        """Test that the parsed application is immutable."""
        app = parser.parse(app_payload())
        with pytest.raises(dataclasses.FrozenInstanceError):
            app.name = "other"  # type: ignore[misc]


@pytest.mark.unit
class TestParseIsTotal:
    def test_empty_mapping(self, parser):
        """Test that an empty mapping parses with defaults."""
        app = parser.parse({})

        assert app.name == ""
        assert app.namespace == "argocd"
        assert app.project == "default"
        assert app.source.target_revision == "HEAD"
        assert app.sync_status.code is SyncStatusCode.UNKNOWN
        assert app.health_status.code is HealthStatusCode.UNKNOWN
        assert app.resources == ()
        assert app.last_operation is None

    @pytest.mark.parametrize(
        "raw",
        [
            {"metadata": "not-a-map", "spec": [], "status": 7},
            {"metadata": {"name": None}, "spec": {"source": "x", "destination": None}},
            {"status": {"sync": "Synced", "health": ["Healthy"], "resources": "nope"}},
            {"status": {"resources": [None, 3, "x", {"kind": "Pod"}]}},
            {"status": {"operationState": "Running"}},
            {"status": {"operationState": {"syncResult": {"resources": [1, None]}}}},
            {"metadata": {"name": 123, "namespace": True}},
        ],
    )
    def test_malformed_blocks_never_raise(self, parser, raw):
        """Test that malformed nested blocks never raise."""
        app = parser.parse(raw)
        assert app.sync_status.code in SyncStatusCode
        assert app.health_status.code in HealthStatusCode

    def test_non_mapping_resource_items_are_skipped(self, parser):
        """Test that non-mapping resource items are skipped."""
        app = parser.parse({"status": {"resources": [None, {"kind": "Pod", "name": "p"}]}})
        assert len(app.resources) == 1
        assert app.resources[0].kind == "Pod"

    def test_numeric_name_is_stringified(self, parser):
        """Test that a numeric name becomes a string."""
        app = parser.parse({"metadata": {"name": 123}})
        assert app.name == "123"

    def test_unknown_sync_value_is_preserved(self, parser, app_payload):
        """Test that an unknown sync value keeps its raw text."""
        app = parser.parse(app_payload(sync="Drifting", health="Wobbly"))

        assert app.sync_status.code is SyncStatusCode.UNKNOWN
        assert app.sync_status.raw == "Drifting"
        assert app.health_status.code is HealthStatusCode.UNKNOWN
        assert app.health_status.raw == "Wobbly"

    def test_known_values_have_no_raw(self, parser, app_payload):
        """Test that known values carry no raw text."""
        app = parser.parse(app_payload())
        assert app.sync_status.raw is None
        assert app.health_status.raw is None

    def test_unknown_phase_keeps_running(self, parser):
        """Test that an unknown operation phase counts as running."""
        app = parser.parse({"status": {"operationState": {"phase": "Pausing"}}})
        assert app.last_operation.phase is OperationPhase.RUNNING

    def test_operation_without_phase_is_running(self, parser):
        """Test that an operation without a phase counts as running."""
        app = parser.parse({"status": {"operationState": {}}})
        assert app.last_operation.phase is OperationPhase.RUNNING

    @pytest.mark.parametrize("raw", [None, "app", 42, ["metadata"]])
    def test_non_mapping_top_level_raises(self, parser, raw):
        """Test that a non-mapping payload is rejected."""
        with pytest.raises(TypeError):
            parser.parse(raw)


@pytest.mark.unit
class TestParseMany:
    def test_skips_non_mapping_items(self, parser, app_payload):
        """Test that parse_many skips non-mapping items."""
        apps = parser.parse_many([app_payload(name="a"), None, "junk", app_payload(name="b")])
        assert [a.name for a in apps] == ["a", "b"]

    def test_context_is_applied(self, parser, app_payload):
        """Test that parse_many applies the cluster context."""
        apps = parser.parse_many([app_payload()], context="staging")
        assert apps[0].context == "staging"

    def test_module_shortcut(self, app_payload):
        """Test that the module-level shortcut parses like the parser."""
        assert parse_application(app_payload(name="x")).name == "x"
