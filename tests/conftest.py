# ABOUTME: Pytest fixtures for the ArgoCD sync engine tests
# ABOUTME: Fake clock and sleep, in-memory cluster executor, Application payload factories

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from argocd_sync.cache import TTLCache
from argocd_sync.config import ClusterContext, SecuritySettings
from argocd_sync.engine import ArgoCDEngine
from argocd_sync.errors import ClusterError
from argocd_sync.utils.client import ResourceKind
from argocd_sync.utils.safety import ActionGuard

FIXED_NOW = datetime(2026, 1, 15, 10, 30, tzinfo=UTC)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Awaitable sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class FakeExecutor:
    """
    In-memory ClusterCommandExecutor.

    Responses are registered per (kind, namespace, name). A list of responses
    is consumed in order, the last one repeating. An exception instance is
    raised instead of returned. Unregistered lookups raise a 404 ClusterError.
    """

    def __init__(self) -> None:
        self.responses: dict[tuple[Any, ...], list[Any]] = {}
        self.queries: list[tuple[Any, ...]] = []
        self.patches: list[tuple[Any, ...]] = []
        self.patch_error: Exception | None = None

    def on_query(
        self,
        kind: ResourceKind,
        *responses: Any,
        namespace: str | None = None,
        name: str | None = None,
    ) -> None:
        self.responses[(kind, namespace, name)] = list(responses)

    def query_count(self, kind: ResourceKind) -> int:
        return sum(1 for q in self.queries if q[1] == kind)

    async def query_resource(
        self,
        context: str,
        kind: ResourceKind,
        namespace: str | None = None,
        name: str | None = None,
        label_selector: str | None = None,
    ) -> dict[str, Any]:
        self.queries.append((context, kind, namespace, name, label_selector))
        queue = self.responses.get((kind, namespace, name))
        if not queue:
            raise ClusterError(f"{kind} {name or ''} not found", status_code=404, reason="NotFound")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def patch_resource(
        self,
        context: str,
        kind: ResourceKind,
        name: str,
        namespace: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        self.patches.append((context, kind, name, namespace, patch))
        if self.patch_error is not None:
            raise self.patch_error
        return {"metadata": {"name": name, "namespace": namespace}}


def application_payload(
    name: str = "guestbook",
    namespace: str = "argocd",
    sync: Any = "Synced",
    health: Any = "Healthy",
    phase: str | None = None,
    message: str | None = None,
    resources: list[Any] | None = None,
    started_at: str = "2026-01-15T10:29:00Z",
) -> dict[str, Any]:
    """Build an Application custom resource as the API server returns it."""
    status: dict[str, Any] = {
        "sync": {"status": sync, "revision": "8f3b2c1d9e0a"},
        "health": {"status": health},
        "resources": resources or [],
    }
    if phase is not None:
        status["operationState"] = {
            "phase": phase,
            "message": message or f"operation {phase.lower()}",
            "startedAt": started_at,
            "finishedAt": "2026-01-15T10:29:30Z" if phase != "Running" else None,
            "syncResult": {
                "revision": "8f3b2c1d9e0a",
                "resources": [
                    {"kind": "Deployment", "name": name, "namespace": "default", "status": "Synced"}
                ],
            },
        }
    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "creationTimestamp": "2026-01-01T00:00:00Z",
        },
        "spec": {
            "project": "default",
            "source": {
                "repoURL": "https://github.com/argoproj/argocd-example-apps.git",
                "path": name,
                "targetRevision": "HEAD",
            },
            "destination": {"server": "https://kubernetes.default.svc", "namespace": "default"},
        },
        "status": status,
    }


def server_deployment(namespace: str = "argocd", version: str | None = "v2.9.3") -> dict[str, Any]:
    labels = {"app.kubernetes.io/name": "argocd-server"}
    if version:
        labels["app.kubernetes.io/version"] = version
    return {
        "metadata": {"name": "argocd-server", "namespace": namespace, "labels": labels},
        "spec": {
            "template": {
                "spec": {"containers": [{"name": "server", "image": "quay.io/argoproj/argocd:2.9.3"}]}
            }
        },
    }


def operator_configmap(payload: dict[str, Any]) -> dict[str, Any]:
    return {"metadata": {"name": "kube9-operator-status"}, "data": {"status": json.dumps(payload)}}


def forbidden(resource: str = "applications.argoproj.io") -> ClusterError:
    return ClusterError(
        f'{resource} is forbidden: User "system:serviceaccount:default:viewer" cannot list resource',
        status_code=403,
        reason="Forbidden",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def installed_executor(executor: FakeExecutor) -> FakeExecutor:
    """Cluster with the Application CRD and an argocd-server Deployment, no operator."""
    executor.on_query(
        ResourceKind.CUSTOM_RESOURCE_DEFINITION,
        {"metadata": {"name": "applications.argoproj.io"}},
        name="applications.argoproj.io",
    )
    executor.on_query(ResourceKind.DEPLOYMENT, {"items": [server_deployment()]})
    return executor


@pytest.fixture
def engine(executor: FakeExecutor, clock: FakeClock, fake_sleep: FakeSleep) -> ArgoCDEngine:
    return ArgoCDEngine(executor, clock=clock, sleep=fake_sleep, wall_clock=lambda: FIXED_NOW)


@pytest.fixture
def cluster_context() -> ClusterContext:
    return ClusterContext(
        name="test",
        server="https://k8s.example.com:6443",
        token=SecretStr("test-token"),
        insecure=True,
    )


@pytest.fixture
def security_settings() -> SecuritySettings:
    return SecuritySettings(
        read_only=False,
        audit_log=None,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    return SecuritySettings(read_only=True, audit_log=None)


@pytest.fixture
def action_guard(security_settings: SecuritySettings) -> ActionGuard:
    return ActionGuard(security_settings)


@pytest.fixture
def audit_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_context() -> MagicMock:
    """Mock MCP request context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


@pytest.fixture
def app_payload() -> Any:
    """Factory for Application resources; see application_payload()."""
    return application_payload


@pytest.fixture
def deployment_payload() -> Any:
    return server_deployment


@pytest.fixture
def operator_payload() -> Any:
    """Factory wrapping an operator status dict into its ConfigMap."""
    return operator_configmap


@pytest.fixture
def forbidden_error() -> ClusterError:
    return forbidden()
