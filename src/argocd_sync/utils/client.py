# ABOUTME: Kubernetes API executor used by every engine component
# ABOUTME: Async httpx client per cluster context with retry and Status-error parsing

"""
Cluster command executor backed by the Kubernetes REST API.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The engine never talks HTTP directly. Detector, repository, actions, and
tracker only see the ClusterCommandExecutor protocol:

    await executor.query_resource("prod", ResourceKind.APPLICATION, namespace="argocd")
    await executor.patch_resource("prod", ResourceKind.APPLICATION, "guestbook",
                                  "argocd", {"metadata": {...}})

Tests pass an in-memory fake; production passes ClusterExecutor, which keeps
one KubernetesClient (one httpx.AsyncClient) per configured cluster context.

=============================================================================
KUBERNETES REST PATHS
=============================================================================

Every resource kind the engine touches maps to a REST path:

    Application  /apis/argoproj.io/v1alpha1/namespaces/{ns}/applications/{name}
    CRD          /apis/apiextensions.k8s.io/v1/customresourcedefinitions/{name}
    Deployment   /apis/apps/v1/namespaces/{ns}/deployments
    ConfigMap    /api/v1/namespaces/{ns}/configmaps/{name}

Leaving out the namespace lists across all namespaces; leaving out the name
returns a List object ({"items": [...]}).

=============================================================================
ERRORS
=============================================================================

Non-2xx responses carry a Kubernetes "Status" body. _request() turns it into
a ClusterError (status code, reason, message) so errors.classify() can decide
between permission, not_found, network, timeout, and unknown. Transport
failures (httpx.ConnectError, httpx.ReadTimeout, ...) propagate unchanged;
classify() recognizes those too.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from argocd_sync.errors import ClusterError, classify, is_retryable

if TYPE_CHECKING:
    from argocd_sync.config import ClusterContext

logger = structlog.get_logger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


# =============================================================================
# RESOURCE KINDS
# =============================================================================


class ResourceKind(StrEnum):
    """Kubernetes resource kinds the engine queries or patches."""

    APPLICATION = "applications.argoproj.io"
    CUSTOM_RESOURCE_DEFINITION = "customresourcedefinitions.apiextensions.k8s.io"
    DEPLOYMENT = "deployments.apps"
    CONFIG_MAP = "configmaps"


# (API group prefix, plural, namespaced)
_KIND_PATHS: dict[ResourceKind, tuple[str, str, bool]] = {
    ResourceKind.APPLICATION: ("/apis/argoproj.io/v1alpha1", "applications", True),
    ResourceKind.CUSTOM_RESOURCE_DEFINITION: (
        "/apis/apiextensions.k8s.io/v1",
        "customresourcedefinitions",
        False,
    ),
    ResourceKind.DEPLOYMENT: ("/apis/apps/v1", "deployments", True),
    ResourceKind.CONFIG_MAP: ("/api/v1", "configmaps", True),
}


def resource_path(kind: ResourceKind, namespace: str | None = None, name: str | None = None) -> str:
    """
    Build the REST path for a resource or collection.

    Examples:
        >>> resource_path(ResourceKind.APPLICATION, "argocd", "guestbook")
        '/apis/argoproj.io/v1alpha1/namespaces/argocd/applications/guestbook'
        >>> resource_path(ResourceKind.APPLICATION)
        '/apis/argoproj.io/v1alpha1/applications'
    """
    prefix, plural, namespaced = _KIND_PATHS[kind]
    path = prefix
    if namespaced and namespace:
        path += f"/namespaces/{namespace}"
    path += f"/{plural}"
    if name:
        path += f"/{name}"
    return path


# =============================================================================
# EXECUTOR PROTOCOL
# =============================================================================


class ClusterCommandExecutor(Protocol):
    """What the engine needs from a cluster: structured reads and merge patches."""

    async def query_resource(
        self,
        context: str,
        kind: ResourceKind,
        namespace: str | None = None,
        name: str | None = None,
        label_selector: str | None = None,
    ) -> dict[str, Any]: ...

    async def patch_resource(
        self,
        context: str,
        kind: ResourceKind,
        name: str,
        namespace: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]: ...


# =============================================================================
# KUBERNETES CLIENT (one cluster)
# =============================================================================


def _should_retry(exc: BaseException) -> bool:
    return is_retryable(classify(exc))


class KubernetesClient:
    """
    Async client for one cluster's API server.

    LIFECYCLE:
    ----------
        async with KubernetesClient(context) as client:
            apps = await client.get(resource_path(ResourceKind.APPLICATION))

    The httpx.AsyncClient is created in __aenter__ and closed in __aexit__,
    so the connection pool is released even if the body raises.

    RETRY:
    ------
    Network and timeout failures (errors.is_retryable) are retried up to 3
    attempts with exponential backoff (1s, 2s). Permission, not-found, and
    unknown failures are raised at once; the caller decides based on their kind.
    """

    def __init__(self, context: ClusterContext, timeout: float = 10.0) -> None:
        self._context = context
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self._context.name

    async def __aenter__(self) -> KubernetesClient:
        headers = {"Accept": "application/json"}
        token = self._context.token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self._context.server,
            headers=headers,
            timeout=self._timeout,
            verify=not self._context.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception(_should_retry),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """
        Issue one API request and decode the JSON body.

        Raises:
            ClusterError: On 4xx/5xx, with the Status reason and message.
            httpx.TimeoutException: After the last retry.
            httpx.TransportError: On connection failures, after the last retry.
            RuntimeError: If used outside 'async with'.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, context=self._context.name)
        log.debug("Kubernetes API request")

        headers = {"Content-Type": content_type} if content_type else None
        response = await self._client.request(
            method,
            path,
            params=params,
            json=json_data,
            headers=headers,
        )

        if response.status_code >= 400:
            log.debug("Kubernetes API error", status=response.status_code)
            raise _status_error(response)

        if not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {}

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request("GET", path, params=params)

    async def merge_patch(self, path: str, patch: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "PATCH", path, json_data=patch, content_type=MERGE_PATCH_CONTENT_TYPE
        )


def _status_error(response: httpx.Response) -> ClusterError:
    """Convert an error response (ideally a Kubernetes Status object) to ClusterError."""
    message = f"HTTP {response.status_code}"
    reason = None
    details = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or message
        reason = body.get("reason")
        status_details = body.get("details")
        causes = status_details.get("causes") if isinstance(status_details, dict) else None
        if causes:
            details = "; ".join(
                str(c.get("message", c)) if isinstance(c, dict) else str(c) for c in causes
            )
    elif response.text:
        details = response.text[:200]
    return ClusterError(message, status_code=response.status_code, reason=reason, details=details)


# =============================================================================
# CLUSTER EXECUTOR (many clusters)
# =============================================================================


class ClusterExecutor:
    """
    ClusterCommandExecutor over several clusters, addressed by context name.

    USAGE:
    ------
        async with ClusterExecutor(settings.all_contexts) as executor:
            engine = ArgoCDEngine(executor, settings)
            status = await engine.detector.resolve("prod")
    """

    def __init__(self, contexts: list[ClusterContext], timeout: float = 10.0) -> None:
        self._clients = {ctx.name: KubernetesClient(ctx, timeout=timeout) for ctx in contexts}

    @property
    def context_names(self) -> list[str]:
        return list(self._clients)

    async def __aenter__(self) -> ClusterExecutor:
        for client in self._clients.values():
            await client.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        for client in self._clients.values():
            await client.__aexit__(*args)

    def client(self, context: str) -> KubernetesClient:
        if context not in self._clients:
            available = ", ".join(self._clients) or "none"
            raise ValueError(f"Unknown cluster context '{context}'. Available: {available}")
        return self._clients[context]

    async def query_resource(
        self,
        context: str,
        kind: ResourceKind,
        namespace: str | None = None,
        name: str | None = None,
        label_selector: str | None = None,
    ) -> dict[str, Any]:
        params = {"labelSelector": label_selector} if label_selector else None
        return await self.client(context).get(resource_path(kind, namespace, name), params=params)

    async def patch_resource(
        self,
        context: str,
        kind: ResourceKind,
        name: str,
        namespace: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        return await self.client(context).merge_patch(resource_path(kind, namespace, name), patch)
