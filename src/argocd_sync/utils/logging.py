# ABOUTME: Structured logging setup and audit trail for the ArgoCD sync engine
# ABOUTME: Correlation IDs tie together every log line emitted by one tool call

"""
Structured logging, correlation IDs, and the audit trail.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Everything in the engine logs through structlog with keyword fields:

    logger.warning("Detection lookup failed", context="prod", kind="network")

configure_logging() decides how those events are rendered: colored console
output for local work, one JSON object per line for log shippers.

=============================================================================
CORRELATION IDs
=============================================================================

A single "sync and track" call produces many events: the patch, each poll,
each phase change, the cache invalidation. The correlation ID processor stamps
all of them with the same short identifier so they can be filtered together:

    jq 'select(.correlation_id == "5e0c9a71")' engine.log

The ID lives in a ContextVar, so concurrent asyncio tasks never see each
other's value.

=============================================================================
AUDIT TRAIL
=============================================================================

Mutations (sync, refresh, hard refresh) and tool calls blocked by ActionGuard
are recorded by AuditLogger, either appended to a JSON-lines file or emitted
as "audit" events through structlog.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

# Empty string means "not assigned yet"; get_correlation_id() fills it lazily.
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Return the correlation ID of the current context, creating one if needed.

    Code running outside any tool call (startup, background polling) still
    gets an ID, so every log line is filterable.

    Returns:
        8-character hex identifier, e.g. '5e0c9a71'.
    """
    cid = correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Bind cid to the current context; "" makes the next read generate one."""
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor that adds the "correlation_id" field."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structlog for the whole process.

    Processor pipeline, in order:

        merge_contextvars   -> fields bound with bind_contextvars()
        add_log_level       -> "level": "info"
        TimeStamper(iso)    -> "timestamp": "2026-01-15T10:30:00Z"
        add_correlation_id  -> "correlation_id": "5e0c9a71"
        renderer            -> JSONRenderer or ConsoleRenderer

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Unknown names fall
               back to INFO.
        json_output: Render JSON lines instead of colored console text.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Record of every mutation issued against a cluster.

    ENTRY FORMAT:
    -------------
    {"timestamp": "2026-01-15T10:30:00+00:00", "correlation_id": "5e0c9a71",
     "action": "sync", "target": "prod/argocd/guestbook", "result": "success",
     "details": {"annotation": "normal"}}

    Targets are written as "<context>/<namespace>/<name>" so entries from
    different clusters never collide.

    Args:
        log_path: Append JSON lines to this file. None routes entries through
                  structlog under the "audit" logger name.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a mutation; result is usually "success" or "initiated"."""
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Record a tool call that ActionGuard refused."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        self.log(action, target, "error", {"error": error})
