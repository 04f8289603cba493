# ABOUTME: Guards in front of the MCP write tools
# ABOUTME: Read-only mode, per-operation rate limits, and hard-refresh confirmation

"""Guards in front of the MCP tools: read-only mode, rate limits, hard-refresh confirmation."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_sync.config import SecuritySettings

logger = structlog.get_logger(__name__)


@dataclass
class ConfirmationRequired:
    """A hard refresh was requested without a matching confirmation."""

    operation: str
    target: str
    impact: str
    details: dict[str, Any] = field(default_factory=dict)

    def format_message(self) -> str:
        lines = [
            f"CONFIRMATION REQUIRED: {self.operation}",
            f"Target: {self.target}",
            f"Impact: {self.impact}",
        ]
        for key, value in self.details.items():
            lines.append(f"  {key}: {value}")
        lines.append(f"Repeat the call with confirm=true and confirm_name='{self.target}'")
        return "\n".join(lines)


@dataclass
class OperationBlocked:
    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        return (
            f"OPERATION BLOCKED: {self.operation}\n"
            f"Reason: {self.reason}\n"
            f"Setting: {self.setting}"
        )


class RateLimiter:
    """Sliding-window call counter per key.

    Args:
        max_calls: Calls allowed per window.
        window_seconds: Window length.
        clock: Time source in seconds.
    """

    def __init__(
        self,
        max_calls: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock
        self._calls: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> bool:
        """Record a call under key. Returns False once the window is full."""
        now = self._clock()
        recent = [t for t in self._calls[key] if now - t < self._window]
        if len(recent) >= self._max_calls:
            self._calls[key] = recent
            logger.warning("Rate limit exceeded", key=key, calls=len(recent))
            return False
        recent.append(now)
        self._calls[key] = recent
        return True

    def reset(self, key: str | None = None) -> None:
        if key:
            self._calls.pop(key, None)
        else:
            self._calls.clear()


class ActionGuard:
    """Decides whether a tool call may go ahead.

    Reads are only rate limited. Sync and refresh are also blocked in
    read-only mode. Hard refresh additionally needs confirm=true and
    confirm_name equal to the application name.
    """

    def __init__(
        self,
        settings: SecuritySettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._rate_limiter = RateLimiter(
            max_calls=settings.rate_limit_calls,
            window_seconds=settings.rate_limit_window,
            clock=clock,
        )

    @staticmethod
    def _read_only_block(operation: str) -> OperationBlocked:
        return OperationBlocked(
            operation=operation,
            reason="Read-only mode is on; set ARGOCD_SYNC_READ_ONLY=false to allow it",
            setting="ARGOCD_SYNC_READ_ONLY",
        )

    def check_read(self, operation: str) -> OperationBlocked | None:
        if not self._rate_limiter.check(f"read:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="ARGOCD_SYNC_RATE_LIMIT_CALLS",
            )
        return None

    def check_write(self, operation: str) -> OperationBlocked | None:
        if self._settings.read_only:
            return self._read_only_block(operation)
        if not self._rate_limiter.check(f"write:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="ARGOCD_SYNC_RATE_LIMIT_CALLS",
            )
        return None

    def check_hard_refresh(
        self,
        target: str,
        confirmed: bool = False,
        confirm_name: str | None = None,
    ) -> OperationBlocked | ConfirmationRequired | None:
        """
        Read-only mode first, then confirmation, then the rate limit.

        An unconfirmed request never reaches the rate limiter, so it does not
        use up a write slot.
        """
        if self._settings.read_only:
            return self._read_only_block("hard_refresh")
        if not confirmed or confirm_name != target:
            return ConfirmationRequired(
                operation="hard_refresh",
                target=target,
                impact=(
                    "Discards ArgoCD's cached manifests and regenerates them from Git; "
                    "expensive for large Helm or Kustomize applications"
                ),
            )
        return self.check_write("hard_refresh")
