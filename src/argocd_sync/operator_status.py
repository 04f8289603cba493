# ABOUTME: Reader for the in-cluster operator's self-reported status ConfigMap
# ABOUTME: Supplies tier 1 of ArgoCD detection and the operator health mode

"""
Operator status artifact.

A cooperating operator (kube9-operator) publishes a ConfigMap named
"kube9-operator-status" whose "status" key holds JSON like:

    {
      "mode": "operated", "tier": "free", "version": "1.4.0",
      "health": "healthy", "lastUpdate": "2026-01-15T10:30:00Z",
      "registered": false,
      "argocd": {"detected": true, "namespace": "argocd",
                 "version": "v2.9.3", "lastChecked": "2026-01-15T10:29:00Z"}
    }

When it is present and carries an "argocd" block, detection trusts it and
skips querying the cluster.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from argocd_sync.errors import ErrorKind, classify, error_text
from argocd_sync.models import OperatorMode
from argocd_sync.utils.client import ResourceKind

if TYPE_CHECKING:
    from argocd_sync.utils.client import ClusterCommandExecutor

logger = structlog.get_logger(__name__)

OPERATOR_STATUS_CONFIGMAP = "kube9-operator-status"
OPERATOR_STATUS_KEY = "status"
DEFAULT_OPERATOR_NAMESPACES = ("kube9-system", "default")
STALE_AFTER = timedelta(minutes=5)

_REQUIRED_FIELDS = ("mode", "tier", "version", "health", "lastUpdate", "registered")


@dataclass(frozen=True)
class ArgoCDStatus:
    """The operator's view of the ArgoCD installation."""

    detected: bool
    namespace: str | None = None
    version: str | None = None
    last_checked: str | None = None


@dataclass(frozen=True)
class OperatorStatus:
    mode: str
    tier: str
    version: str
    health: str
    last_update: str
    registered: bool
    argocd: ArgoCDStatus | None = None
    namespace: str | None = None


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def determine_mode(status: OperatorStatus | None, now: datetime | None = None) -> OperatorMode:
    """
    Derive the operator mode from a status report.

    RULES (first match wins):
    -------------------------
    no report                             -> basic
    lastUpdate older than 5 min / garbage -> degraded
    health degraded or unhealthy          -> degraded
    mode enabled + tier pro + registered + healthy -> enabled
    mode operated + tier free + healthy   -> operated
    anything else                         -> degraded
    """
    if status is None:
        return OperatorMode.BASIC

    now = now or datetime.now(UTC)
    updated = _parse_timestamp(status.last_update)
    if updated is None or now - updated > STALE_AFTER:
        return OperatorMode.DEGRADED

    if status.health in ("degraded", "unhealthy"):
        return OperatorMode.DEGRADED

    healthy = status.health == "healthy"
    if status.mode == "enabled" and status.tier == "pro" and status.registered and healthy:
        return OperatorMode.ENABLED
    if status.mode == "operated" and status.tier == "free" and healthy:
        return OperatorMode.OPERATED
    return OperatorMode.DEGRADED


def parse_operator_status(payload: Any, namespace: str | None = None) -> OperatorStatus | None:
    """
    Parse the decoded "status" JSON. Returns None when a required field is missing.
    """
    if not isinstance(payload, Mapping):
        return None
    missing = [f for f in _REQUIRED_FIELDS if payload.get(f) in (None, "")]
    if missing:
        logger.warning("Operator status missing required fields", missing=missing)
        return None

    argocd = None
    raw_argocd = payload.get("argocd")
    if isinstance(raw_argocd, Mapping):
        argocd = ArgoCDStatus(
            detected=raw_argocd.get("detected") is True,
            namespace=raw_argocd.get("namespace") or None,
            version=raw_argocd.get("version") or None,
            last_checked=raw_argocd.get("lastChecked") or None,
        )

    return OperatorStatus(
        mode=str(payload["mode"]),
        tier=str(payload["tier"]),
        version=str(payload["version"]),
        health=str(payload["health"]),
        last_update=str(payload["lastUpdate"]),
        registered=payload["registered"] is True,
        argocd=argocd,
        namespace=namespace,
    )


class OperatorStatusReader:
    """
    Find and parse the operator status ConfigMap for a cluster context.

    Candidate namespaces are tried in order: the configured operator
    namespace (if any), then kube9-system, then default. Every failure mode
    (not installed, RBAC, unreachable, bad JSON) ends in None; the detector
    then falls through to the cluster lookup.
    """

    def __init__(
        self,
        executor: ClusterCommandExecutor,
        operator_namespace: str | None = None,
    ) -> None:
        self._executor = executor
        namespaces = [operator_namespace] if operator_namespace else []
        namespaces.extend(ns for ns in DEFAULT_OPERATOR_NAMESPACES if ns not in namespaces)
        self.namespaces: tuple[str, ...] = tuple(namespaces)

    async def read(self, context: str) -> OperatorStatus | None:
        for namespace in self.namespaces:
            try:
                configmap = await self._executor.query_resource(
                    context,
                    ResourceKind.CONFIG_MAP,
                    namespace=namespace,
                    name=OPERATOR_STATUS_CONFIGMAP,
                )
            except Exception as exc:
                kind = classify(exc)
                if kind is ErrorKind.NOT_FOUND:
                    continue
                # Permission or connectivity problems will not improve in the next namespace
                logger.debug(
                    "Operator status unreadable",
                    context=context,
                    namespace=namespace,
                    kind=str(kind),
                    error=error_text(exc),
                )
                return None

            raw = (configmap.get("data") or {}).get(OPERATOR_STATUS_KEY)
            if not raw:
                logger.debug("Operator status ConfigMap has no status key", namespace=namespace)
                return None
            try:
                payload = json.loads(raw)
            except (TypeError, ValueError) as exc:
                logger.warning(
                    "Operator status is not valid JSON",
                    context=context,
                    namespace=namespace,
                    error=str(exc),
                )
                return None
            return parse_operator_status(payload, namespace=namespace)
        return None
