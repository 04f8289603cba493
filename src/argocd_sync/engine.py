# ABOUTME: Engine session that wires cache, detector, repository, actions, and tracker
# ABOUTME: The single entry point presentation layers build on

"""
ArgoCDEngine: one session, one cache, all components.

    async with ClusterExecutor(settings.all_contexts) as executor:
        engine = ArgoCDEngine.from_settings(executor, settings)
        status = await engine.detector.resolve("prod")
        apps = await engine.applications("prod")
        result = await engine.sync_and_track(apps[0])

The cache is owned by the engine instance rather than a module global, so two
engines (or two tests) never share state.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from argocd_sync.actions import ActionExecutor
from argocd_sync.cache import TTLCache
from argocd_sync.detector import InstallationDetector
from argocd_sync.models import (
    APPLICATION_CACHE_TTL,
    DEFAULT_ARGOCD_NAMESPACE,
    DETECTION_CACHE_TTL,
    OPERATION_POLL_INTERVAL,
    OPERATION_TIMEOUT_MS,
    Application,
)
from argocd_sync.operator_status import OperatorStatusReader
from argocd_sync.parser import ApplicationParser
from argocd_sync.repository import ApplicationRepository
from argocd_sync.tracker import OperationTracker, previous_operation

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from argocd_sync.config import EngineSettings
    from argocd_sync.models import (
        ApplicationRef,
        OperationPhase,
        OperationResult,
    )
    from argocd_sync.tracker import CancellationToken
    from argocd_sync.utils.client import ClusterCommandExecutor
    from argocd_sync.utils.logging import AuditLogger


class ArgoCDEngine:
    def __init__(
        self,
        executor: ClusterCommandExecutor,
        *,
        detection_ttl: float = DETECTION_CACHE_TTL,
        application_ttl: float = APPLICATION_CACHE_TTL,
        poll_interval: float = OPERATION_POLL_INTERVAL,
        timeout_ms: int = OPERATION_TIMEOUT_MS,
        operator_namespace: str | None = None,
        argocd_namespace: str = DEFAULT_ARGOCD_NAMESPACE,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        wall_clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache = TTLCache(clock=clock)
        self.parser = ApplicationParser()
        self.operator_reader = OperatorStatusReader(executor, operator_namespace)
        self.detector = InstallationDetector(
            executor,
            self.cache,
            operator_reader=self.operator_reader,
            ttl=detection_ttl,
            clock=wall_clock,
            default_namespace=argocd_namespace,
        )
        self.repository = ApplicationRepository(
            executor, self.cache, parser=self.parser, ttl=application_ttl
        )
        self.actions = ActionExecutor(executor, audit_logger=audit_logger)
        self.tracker = OperationTracker(
            self.repository,
            poll_interval=poll_interval,
            timeout_ms=timeout_ms,
            clock=clock,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls,
        executor: ClusterCommandExecutor,
        settings: EngineSettings,
        audit_logger: AuditLogger | None = None,
    ) -> ArgoCDEngine:
        return cls(
            executor,
            detection_ttl=settings.detection_ttl,
            application_ttl=settings.application_ttl,
            poll_interval=settings.poll_interval,
            timeout_ms=settings.timeout_ms,
            operator_namespace=settings.operator_namespace,
            argocd_namespace=settings.argocd_namespace,
            audit_logger=audit_logger,
        )

    async def applications(
        self, context: str, bypass_cache: bool = False
    ) -> list[Application]:
        """Resolve the installation, then list its Applications ([] if absent)."""
        status = await self.detector.resolve(context, bypass_cache=bypass_cache)
        if not status.installed or status.namespace is None:
            return []
        return await self.repository.list(context, status.namespace, bypass_cache=bypass_cache)

    async def sync_and_track(
        self,
        app: Application | ApplicationRef,
        timeout_ms: int | None = None,
        cancel: CancellationToken | None = None,
        on_phase: Callable[[OperationPhase], None] | None = None,
    ) -> OperationResult:
        """
        Request a sync and wait for the operation it starts.

        The Application is fetched once before the patch so that an operation
        which had already finished is not reported as this sync's outcome.
        timeout_ms defaults to the tracker's configured timeout.
        """
        ref = app.ref if isinstance(app, Application) else app
        before = await self.repository.get(ref.context, ref.name, ref.namespace)
        await self.actions.sync(ref)
        return await self.tracker.track(
            ref,
            timeout_ms=timeout_ms,
            cancel=cancel,
            on_phase=on_phase,
            since=previous_operation(before),
        )

    def invalidate(self, context: str) -> None:
        """Forget everything cached for a context (detection and lists)."""
        self.detector.invalidate(context)
        self.repository.invalidate(context)
