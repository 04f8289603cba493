# ABOUTME: Layered ArgoCD installation detection with per-context caching
# ABOUTME: Operator report first, then CRD plus server Deployment lookup, then absence

"""
InstallationDetector: is ArgoCD installed in this cluster, and where?

=============================================================================
DETECTION TIERS
=============================================================================

1. OPERATED: the operator status ConfigMap carries an "argocd" block.
   Its answer is authoritative, including "detected": false.

2. LOOKUP: the Application CRD exists AND an argocd-server Deployment is
   found. Namespace and version are taken from that Deployment.

3. ABSENT: installed=False, mode=basic.

A lookup that FAILS is never fatal. The failure is classified and logged.
Permission and not-found failures mean "not found at this tier". Network,
timeout, and unknown failures say nothing about the installation, so the last
status resolved for the context is returned instead (or "absent" if there is
none) and nothing is cached. resolve() itself never raises for a classified
error.

=============================================================================
CACHING
=============================================================================

Results are cached per cluster context under "detection:<context>" for the
detection TTL (default five minutes). bypass_cache=True re-resolves and
rewrites the entry. Every successful resolution is also kept under
"detection-last-known:<context>" with no expiry, as the fallback above.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from argocd_sync.errors import ErrorKind, classify, error_text, is_transient
from argocd_sync.models import (
    ARGOCD_APPLICATION_CRD,
    ARGOCD_SERVER_SELECTOR,
    ARGOCD_VERSION_LABEL,
    DEFAULT_ARGOCD_NAMESPACE,
    DETECTION_CACHE_TTL,
    DetectionMode,
    InstallationStatus,
    OperatorMode,
)
from argocd_sync.operator_status import determine_mode
from argocd_sync.utils.client import ResourceKind

if TYPE_CHECKING:
    from argocd_sync.cache import TTLCache
    from argocd_sync.operator_status import OperatorStatusReader
    from argocd_sync.utils.client import ClusterCommandExecutor

logger = structlog.get_logger(__name__)

_SEMVER = re.compile(r"^\d+\.\d+\.\d+")


def detection_key(context: str) -> str:
    return f"detection:{context}"


def last_known_detection_key(context: str) -> str:
    return f"detection-last-known:{context}"


def version_from_deployment(deployment: Mapping[str, Any]) -> str | None:
    """
    Version label first, then the first container's image tag.

    Bare semantic versions get a "v" prefix so both sources look alike:
        quay.io/argoproj/argocd:2.9.3   -> "v2.9.3"
        quay.io/argoproj/argocd:v2.9.3  -> "v2.9.3"
    """
    metadata = deployment.get("metadata") or {}
    labels = metadata.get("labels") or {}
    label = labels.get(ARGOCD_VERSION_LABEL)
    if label:
        return str(label)

    containers = (((deployment.get("spec") or {}).get("template") or {}).get("spec") or {}).get(
        "containers"
    ) or []
    if not containers or not isinstance(containers[0], Mapping):
        return None
    image = str(containers[0].get("image") or "")
    # A registry port ("host:5000/argocd") is not a tag
    name, sep, tag = image.rpartition(":")
    if not sep or not name or "/" in tag:
        return None
    if _SEMVER.match(tag) and not tag.startswith("v"):
        tag = f"v{tag}"
    return tag


class _LookupUnavailable(Exception):
    """A lookup failed for a reason that says nothing about the installation."""

    def __init__(self, kind: ErrorKind, absent: InstallationStatus) -> None:
        super().__init__(str(kind))
        self.kind = kind
        self.absent = absent


class InstallationDetector:
    """
    Resolves InstallationStatus per cluster context.

    Args:
        executor: Cluster command executor.
        cache: Shared TTL cache of the engine session.
        operator_reader: Tier 1 source; None skips straight to the cluster lookup.
        ttl: Seconds a resolved status stays cached.
        clock: Wall clock for detected_at and operator staleness.
        default_namespace: Namespace reported when the source names none.
    """

    def __init__(
        self,
        executor: ClusterCommandExecutor,
        cache: TTLCache,
        operator_reader: OperatorStatusReader | None = None,
        ttl: float = DETECTION_CACHE_TTL,
        clock: Callable[[], datetime] | None = None,
        default_namespace: str = DEFAULT_ARGOCD_NAMESPACE,
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._operator_reader = operator_reader
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))
        self._default_namespace = default_namespace

    async def resolve(self, context: str, bypass_cache: bool = False) -> InstallationStatus:
        key = detection_key(context)
        if not bypass_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            status = await self._detect(context)
        except _LookupUnavailable as exc:
            return self._degraded(context, exc)

        self._cache.set(key, status, self._ttl)
        self._cache.set(last_known_detection_key(context), status, float("inf"))
        logger.info(
            "ArgoCD detection resolved",
            context=context,
            installed=status.installed,
            namespace=status.namespace,
            version=status.version,
            mode=str(status.mode),
        )
        return status

    def invalidate(self, context: str) -> bool:
        """Drop the cached status. The last-known status is kept as a fallback."""
        return self._cache.invalidate(detection_key(context))

    def _degraded(self, context: str, exc: _LookupUnavailable) -> InstallationStatus:
        # Nothing is cached, so the next resolve looks again
        last_known = self._cache.get(last_known_detection_key(context))
        if last_known is not None:
            logger.info(
                "Serving last known installation status",
                context=context,
                kind=str(exc.kind),
                installed=last_known.installed,
            )
            return last_known
        return exc.absent

    async def _detect(self, context: str) -> InstallationStatus:
        now = self._clock()

        operator_mode = None
        if self._operator_reader is not None:
            operator_status = await self._operator_reader.read(context)
            operator_mode = determine_mode(operator_status, now)
            if operator_status is not None and operator_status.argocd is not None:
                argocd = operator_status.argocd
                if not argocd.detected:
                    return InstallationStatus.not_installed(
                        DetectionMode.OPERATED, now, operator_mode
                    )
                return InstallationStatus(
                    installed=True,
                    mode=DetectionMode.OPERATED,
                    detected_at=now,
                    namespace=argocd.namespace or self._default_namespace,
                    version=argocd.version,
                    operator_mode=operator_mode,
                )

        return await self._lookup(context, now, operator_mode)

    async def _lookup(
        self, context: str, now: datetime, operator_mode: OperatorMode | None
    ) -> InstallationStatus:
        absent = InstallationStatus.not_installed(DetectionMode.BASIC, now, operator_mode)

        if not await self._crd_exists(context, absent):
            return absent

        deployment = await self._find_server(context, absent)
        if deployment is None:
            logger.debug("Application CRD present but no ArgoCD server found", context=context)
            return absent

        metadata = deployment.get("metadata") or {}
        return InstallationStatus(
            installed=True,
            mode=DetectionMode.BASIC,
            detected_at=now,
            namespace=metadata.get("namespace") or self._default_namespace,
            version=version_from_deployment(deployment),
            operator_mode=operator_mode,
        )

    async def _crd_exists(self, context: str, absent: InstallationStatus) -> bool:
        try:
            await self._executor.query_resource(
                context,
                ResourceKind.CUSTOM_RESOURCE_DEFINITION,
                name=ARGOCD_APPLICATION_CRD,
            )
        except Exception as exc:
            self._lookup_failed(context, "crd", exc, absent)
            return False
        return True

    async def _find_server(
        self, context: str, absent: InstallationStatus
    ) -> Mapping[str, Any] | None:
        try:
            result = await self._executor.query_resource(
                context,
                ResourceKind.DEPLOYMENT,
                label_selector=ARGOCD_SERVER_SELECTOR,
            )
        except Exception as exc:
            self._lookup_failed(context, "server", exc, absent)
            return None
        items = [item for item in result.get("items") or [] if isinstance(item, Mapping)]
        return items[0] if items else None

    def _lookup_failed(
        self, context: str, target: str, exc: Exception, absent: InstallationStatus
    ) -> None:
        """Log a lookup failure; raise _LookupUnavailable unless it means "absent"."""
        kind = classify(exc)
        fields = {"context": context, "target": target, "kind": str(kind)}
        if kind is ErrorKind.NOT_FOUND:
            logger.debug("ArgoCD lookup found nothing", **fields)
        elif kind is ErrorKind.UNKNOWN:
            logger.error(
                "ArgoCD lookup failed",
                error=error_text(exc),
                error_type=type(exc).__name__,
                **fields,
            )
        else:
            logger.warning("ArgoCD lookup failed", error=error_text(exc), **fields)

        if is_transient(kind):
            raise _LookupUnavailable(kind, absent) from exc
