# ABOUTME: Namespace-scoped access to ArgoCD Application resources
# ABOUTME: Cached list with last-known-good fallback, uncached single get

"""
ApplicationRepository.

list() is what a tree view refreshes every few seconds: it must be cheap and
must never blow up. It is cached for a short TTL, and when the cluster cannot
be read it falls back to the last list it did see (network, timeout, unknown)
or to an empty list (permission, not found).

get() is what the user asked for explicitly, so errors propagate as
classified ArgoCDError subclasses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from argocd_sync.errors import ErrorKind, classify, error_text, is_transient, to_argocd_error
from argocd_sync.models import APPLICATION_CACHE_TTL
from argocd_sync.parser import ApplicationParser
from argocd_sync.utils.client import ResourceKind

if TYPE_CHECKING:
    from argocd_sync.cache import TTLCache
    from argocd_sync.models import Application
    from argocd_sync.utils.client import ClusterCommandExecutor

logger = structlog.get_logger(__name__)


def list_key(context: str, namespace: str) -> str:
    return f"applications:{context}:{namespace}"


def last_known_key(context: str, namespace: str) -> str:
    return f"last-known:{context}:{namespace}"


class ApplicationRepository:
    def __init__(
        self,
        executor: ClusterCommandExecutor,
        cache: TTLCache,
        parser: ApplicationParser | None = None,
        ttl: float = APPLICATION_CACHE_TTL,
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._parser = parser or ApplicationParser()
        self._ttl = ttl

    async def list(
        self, context: str, namespace: str, bypass_cache: bool = False
    ) -> list[Application]:
        """
        All Applications in namespace, freshest available.

        Never raises for a classified cluster error.
        """
        key = list_key(context, namespace)
        if not bypass_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        try:
            result = await self._executor.query_resource(
                context, ResourceKind.APPLICATION, namespace=namespace
            )
        except Exception as exc:
            return self._degraded_list(context, namespace, exc)

        applications = self._parser.parse_many(result.get("items") or [], context)
        snapshot = tuple(applications)
        self._cache.set(key, snapshot, self._ttl)
        # Kept outside the TTL so it survives expiry of the list entry
        self._cache.set(last_known_key(context, namespace), snapshot, float("inf"))
        logger.debug(
            "Applications listed", context=context, namespace=namespace, count=len(snapshot)
        )
        return applications

    async def get(self, context: str, name: str, namespace: str) -> Application:
        """
        Fetch one Application, bypassing every cache.

        Raises:
            ArgoCDError: Classified failure (ArgoCDNotFoundError if deleted).
        """
        try:
            raw = await self._executor.query_resource(
                context, ResourceKind.APPLICATION, namespace=namespace, name=name
            )
        except Exception as exc:
            error = to_argocd_error(exc, context)
            logger.warning(
                "Application fetch failed",
                context=context,
                namespace=namespace,
                name=name,
                kind=str(error.kind),
            )
            raise error from exc
        return self._parser.parse(raw, context)

    def invalidate(self, context: str, namespace: str | None = None) -> int:
        """
        Drop cached lists for one namespace, or for the whole context.

        Last-known-good snapshots are kept: they only serve as a fallback.
        """
        if namespace is not None:
            return int(self._cache.invalidate(list_key(context, namespace)))
        return self._cache.invalidate_prefix(f"applications:{context}:")

    def _degraded_list(self, context: str, namespace: str, exc: Exception) -> list[Application]:
        kind = classify(exc)
        fields = {
            "context": context,
            "namespace": namespace,
            "kind": str(kind),
            "error": error_text(exc),
        }
        if kind is ErrorKind.UNKNOWN:
            logger.error("Application list failed", error_type=type(exc).__name__, **fields)
        else:
            logger.warning("Application list failed", **fields)

        if is_transient(kind):
            last_known = self._cache.get(last_known_key(context, namespace))
            if last_known is not None:
                logger.info(
                    "Serving last known application list",
                    context=context,
                    namespace=namespace,
                    count=len(last_known),
                )
                return list(last_known)
        return []
