# ABOUTME: Mutating actions on ArgoCD Applications: sync, refresh, hard refresh
# ABOUTME: Each action is a single annotation merge patch, audit-logged

"""
ActionExecutor.

ArgoCD watches the "argocd.argoproj.io/refresh" annotation on Application
resources. Setting it asks the application controller to act:

    normal -> re-compare with Git and sync if automated (sync, refresh)
    hard   -> also discard the manifest cache (hard refresh)

So every action is one JSON merge patch:

    {"metadata": {"annotations": {"argocd.argoproj.io/refresh": "normal"}}}

There is no retry here. A failed patch raises a classified ArgoCDError and the
caller decides what to do. Actions leave caches alone; OperationTracker
invalidates once the resulting operation reaches a terminal phase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from argocd_sync.errors import to_argocd_error
from argocd_sync.models import REFRESH_ANNOTATION, Application, ApplicationRef
from argocd_sync.utils.client import ResourceKind

if TYPE_CHECKING:
    from argocd_sync.utils.client import ClusterCommandExecutor
    from argocd_sync.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)


class RefreshMarker(StrEnum):
    NORMAL = "normal"
    HARD = "hard"


def refresh_patch(marker: RefreshMarker) -> dict[str, dict[str, dict[str, str]]]:
    return {"metadata": {"annotations": {REFRESH_ANNOTATION: str(marker)}}}


def _ref(app: Application | ApplicationRef) -> ApplicationRef:
    return app.ref if isinstance(app, Application) else app


def audit_target(ref: ApplicationRef) -> str:
    return f"{ref.context}/{ref.namespace}/{ref.name}"


class ActionExecutor:
    """
    Issues sync, refresh, and hard-refresh requests.

    Every method accepts an Application snapshot or a bare ApplicationRef.

    Raises (all methods):
        ArgoCDPermissionError: RBAC denies patching Applications.
        ArgoCDNotFoundError: The Application was deleted.
        ArgoCDNetworkError / ArgoCDTimeoutError: Cluster unreachable or slow.
    """

    def __init__(
        self,
        executor: ClusterCommandExecutor,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._executor = executor
        self._audit = audit_logger

    async def sync(self, app: Application | ApplicationRef) -> None:
        await self._annotate("sync", _ref(app), RefreshMarker.NORMAL)

    async def refresh(self, app: Application | ApplicationRef) -> None:
        await self._annotate("refresh", _ref(app), RefreshMarker.NORMAL)

    async def hard_refresh(self, app: Application | ApplicationRef) -> None:
        await self._annotate("hard_refresh", _ref(app), RefreshMarker.HARD)

    async def _annotate(self, action: str, ref: ApplicationRef, marker: RefreshMarker) -> None:
        log = logger.bind(
            action=action, context=ref.context, namespace=ref.namespace, name=ref.name
        )
        target = audit_target(ref)
        try:
            await self._executor.patch_resource(
                ref.context,
                ResourceKind.APPLICATION,
                ref.name,
                ref.namespace,
                refresh_patch(marker),
            )
        except Exception as exc:
            error = to_argocd_error(exc, ref.context)
            log.warning("ArgoCD action failed", kind=str(error.kind), error=error.message)
            if self._audit:
                self._audit.log_error(action, target, str(error))
            raise error from exc

        log.info("ArgoCD action requested", annotation=str(marker))
        if self._audit:
            self._audit.log_write(action, target, "success", {"annotation": str(marker)})
