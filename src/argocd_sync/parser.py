# ABOUTME: Total parser from raw Application custom resources to the domain model
# ABOUTME: Never raises for mapping input; unknown values degrade to Unknown

"""
ApplicationParser: loosely typed payload in, frozen Application out.

=============================================================================
TOTALITY
=============================================================================

Application resources come from the cluster, written by whatever ArgoCD
version is installed. Fields may be missing, null, or of the wrong type:

    {"metadata": {"name": "guestbook"}, "status": {"sync": "weird"}}

parse() handles every such case by treating a malformed block as empty and a
malformed scalar as absent. Only a non-mapping TOP-LEVEL payload is rejected
(TypeError), because that means the caller passed the wrong object entirely.

=============================================================================
PAYLOAD SHAPE (the parts that are read)
=============================================================================

    metadata:  name, namespace, creationTimestamp
    spec:      project, source{repoURL, path, targetRevision, chart},
               destination{server, namespace, name}
    status:    sync{status, revision}, health{status, message},
               resources[{kind, name, namespace, group, status, health{...},
                          requiresPruning}],
               operationState{phase, message, startedAt, finishedAt,
                              syncResult{revision, resources[...]}}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from argocd_sync.models import (
    DEFAULT_ARGOCD_NAMESPACE,
    Application,
    ApplicationDestination,
    ApplicationSource,
    ArgoCDResource,
    HealthStatus,
    HealthStatusCode,
    OperationPhase,
    OperationState,
    ResourceResult,
    SyncOperationResult,
    SyncStatus,
    SyncStatusCode,
)

logger = structlog.get_logger(__name__)

_EMPTY: Mapping[str, Any] = {}


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else _EMPTY


def _sequence(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _text(value: Any, default: str = "") -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return default


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _sync_code(value: Any) -> tuple[SyncStatusCode, str | None]:
    """Return the enum code and, if it did not map, the upstream text."""
    text = _text(value)
    try:
        return SyncStatusCode(text), None
    except ValueError:
        return SyncStatusCode.UNKNOWN, text or None


def _health_code(value: Any) -> tuple[HealthStatusCode, str | None]:
    text = _text(value)
    try:
        return HealthStatusCode(text), None
    except ValueError:
        return HealthStatusCode.UNKNOWN, text or None


def _phase(value: Any) -> OperationPhase:
    # An unrecognized phase keeps tracking alive rather than inventing an outcome.
    try:
        return OperationPhase(_text(value))
    except ValueError:
        return OperationPhase.RUNNING


class ApplicationParser:
    """Stateless converter; one shared instance is enough."""

    def parse(self, raw: Any, context: str = "") -> Application:
        """
        Convert one Application resource into an Application snapshot.

        Args:
            raw: The decoded resource.
            context: Cluster context the resource was read from.

        Raises:
            TypeError: If raw is not a mapping.
        """
        if not isinstance(raw, Mapping):
            raise TypeError(f"Application payload must be a mapping, got {type(raw).__name__}")

        metadata = _mapping(raw.get("metadata"))
        spec = _mapping(raw.get("spec"))
        status = _mapping(raw.get("status"))

        last_operation = self._operation(status.get("operationState"))
        synced_at = None
        if last_operation and last_operation.phase is OperationPhase.SUCCEEDED:
            synced_at = last_operation.finished_at

        return Application(
            name=_text(metadata.get("name")),
            namespace=_text(metadata.get("namespace"), DEFAULT_ARGOCD_NAMESPACE),
            project=_text(spec.get("project"), "default"),
            context=context,
            source=self._source(spec.get("source")),
            destination=self._destination(spec.get("destination")),
            sync_status=self._sync(status.get("sync")),
            health_status=self._health(status.get("health")),
            resources=tuple(
                self._resource(item)
                for item in _sequence(status.get("resources"))
                if isinstance(item, Mapping)
            ),
            last_operation=last_operation,
            created_at=_text(metadata.get("creationTimestamp")),
            synced_at=synced_at,
        )

    def parse_many(self, items: Iterable[Any], context: str = "") -> list[Application]:
        """Parse every mapping item; anything else is skipped with a warning."""
        applications = []
        for index, item in enumerate(items):
            if not isinstance(item, Mapping):
                logger.warning(
                    "Skipping malformed Application item",
                    context=context,
                    index=index,
                    item_type=type(item).__name__,
                )
                continue
            applications.append(self.parse(item, context))
        return applications

    # -------------------------------------------------------------------------
    # BLOCKS
    # -------------------------------------------------------------------------

    def _source(self, raw: Any) -> ApplicationSource:
        source = _mapping(raw)
        return ApplicationSource(
            repo_url=_text(source.get("repoURL")),
            path=_text(source.get("path")),
            target_revision=_text(source.get("targetRevision"), "HEAD"),
            chart=_optional_text(source.get("chart")),
        )

    def _destination(self, raw: Any) -> ApplicationDestination:
        destination = _mapping(raw)
        return ApplicationDestination(
            server=_text(destination.get("server")),
            namespace=_text(destination.get("namespace")),
            name=_optional_text(destination.get("name")),
        )

    def _sync(self, raw: Any) -> SyncStatus:
        sync = _mapping(raw)
        code, unmapped = _sync_code(sync.get("status"))
        return SyncStatus(code=code, revision=_text(sync.get("revision")), raw=unmapped)

    def _health(self, raw: Any) -> HealthStatus:
        health = _mapping(raw)
        code, unmapped = _health_code(health.get("status"))
        return HealthStatus(code=code, message=_optional_text(health.get("message")), raw=unmapped)

    def _resource(self, raw: Mapping[str, Any]) -> ArgoCDResource:
        health = _mapping(raw.get("health"))
        sync_code, _ = _sync_code(raw.get("status"))
        health_code, _ = _health_code(health.get("status"))
        return ArgoCDResource(
            kind=_text(raw.get("kind")),
            name=_text(raw.get("name")),
            namespace=_text(raw.get("namespace")),
            group=_text(raw.get("group")),
            sync_status=sync_code,
            health_status=health_code,
            message=_optional_text(health.get("message")),
            requires_pruning=raw.get("requiresPruning") is True,
        )

    def _operation(self, raw: Any) -> OperationState | None:
        if not isinstance(raw, Mapping):
            return None
        return OperationState(
            phase=_phase(raw.get("phase")),
            started_at=_text(raw.get("startedAt")),
            message=_optional_text(raw.get("message")),
            finished_at=_optional_text(raw.get("finishedAt")),
            sync_result=self._sync_result(raw.get("syncResult")),
        )

    def _sync_result(self, raw: Any) -> SyncOperationResult | None:
        if not isinstance(raw, Mapping):
            return None
        return SyncOperationResult(
            revision=_text(raw.get("revision")),
            resources=tuple(
                ResourceResult(
                    kind=_text(item.get("kind")),
                    name=_text(item.get("name")),
                    namespace=_text(item.get("namespace")),
                    status=_text(item.get("status")),
                    message=_optional_text(item.get("message")),
                    hook_phase=_optional_text(item.get("hookPhase")),
                )
                for item in _sequence(raw.get("resources"))
                if isinstance(item, Mapping)
            ),
        )


_default_parser = ApplicationParser()


def parse_application(raw: Any, context: str = "") -> Application:
    """Module-level shortcut for ApplicationParser().parse()."""
    return _default_parser.parse(raw, context)
