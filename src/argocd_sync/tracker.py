# ABOUTME: Polls an Application's operation state until terminal, timeout, or cancel
# ABOUTME: Each tick is a pure state transition; clock and sleep are injectable

"""
OperationTracker.

After sync() patches the refresh annotation, ArgoCD starts an operation and
reports it in status.operationState. The tracker re-fetches the Application
every poll interval until that operation reaches a terminal phase.

=============================================================================
STATE MACHINE
=============================================================================

    TrackingState(deadline, since, phase=None, result=None)
        |
        | advance(state, observed, now)
        v
    observed started at "since"? -> treated as no operation yet
    observed terminal?   -> result = Succeeded(state) / Failed(state)
    now >= deadline?     -> result = TimedOut
    otherwise            -> phase = observed.phase, keep polling

advance() is pure, so every transition can be tested without timers. The
loop in track() only does I/O: fetch, advance, notify, sleep.

"since" is the startedAt of the operation that had already finished before
the sync was requested. ArgoCD keeps reporting that operation until the
controller starts the new one, so it must not be taken for the result.
previous_operation() computes it from a snapshot taken before the patch.

=============================================================================
ENDINGS
=============================================================================

- Terminal phase: the application list cache for the app's namespace is
  invalidated exactly once, so the next list shows the new state.
- Timeout: OperationResult.timed_out(). No request is sent to the cluster
  and nothing is invalidated; the operation may still finish server-side.
- Cancellation: the caller's CancellationToken is set; track() raises
  OperationCancelled without contacting the cluster again.

Concurrent track() calls for the same Application are not deduplicated.
Each runs its own loop and each invalidates on completion.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import structlog

from argocd_sync.errors import OperationCancelled
from argocd_sync.models import (
    OPERATION_POLL_INTERVAL,
    OPERATION_TIMEOUT_MS,
    Application,
    ApplicationRef,
    OperationPhase,
    OperationResult,
    OperationState,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from argocd_sync.repository import ApplicationRepository

logger = structlog.get_logger(__name__)


class CancellationToken:
    """Caller-owned cancel switch for one or more track() calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class TrackingState:
    deadline: float
    since: str | None = None
    phase: OperationPhase | None = None
    last_state: OperationState | None = None
    result: OperationResult | None = None
    polls: int = 0

    @classmethod
    def start(cls, now: float, timeout_ms: int, since: str | None = None) -> TrackingState:
        return cls(deadline=now + timeout_ms / 1000, since=since)

    @property
    def done(self) -> bool:
        return self.result is not None

    def expired(self, now: float) -> bool:
        return now >= self.deadline

    def is_previous(self, observed: OperationState) -> bool:
        return self.since is not None and observed.started_at == self.since


def advance(state: TrackingState, observed: OperationState | None, now: float) -> TrackingState:
    """
    One polling tick.

    Args:
        state: Current tracking state. A finished state is returned unchanged.
        observed: The Application's last_operation as just fetched, or None
                  if ArgoCD has not recorded an operation yet.
                  An operation started at state.since counts as None.
        now: Current time on the tracker's clock, in seconds.
    """
    if state.done:
        return state

    polls = state.polls + 1
    if observed is not None and state.is_previous(observed):
        observed = None

    if observed is not None and observed.is_terminal:
        if observed.phase is OperationPhase.SUCCEEDED:
            result = OperationResult.succeeded(observed)
        else:
            result = OperationResult.failed(observed)
        return replace(state, phase=observed.phase, last_state=observed, result=result, polls=polls)

    if state.expired(now):
        return replace(state, result=OperationResult.timed_out(), polls=polls)

    if observed is None:
        return replace(state, polls=polls)
    return replace(state, phase=observed.phase, last_state=observed, polls=polls)


def previous_operation(app: Application) -> str | None:
    """startedAt of app's operation if it has already finished, else None."""
    operation = app.last_operation
    if operation is None or not operation.is_terminal:
        return None
    return operation.started_at or None


class OperationTracker:
    """
    Args:
        repository: Source of fresh Application snapshots (get is uncached).
        poll_interval: Seconds between fetches.
        timeout_ms: Default for track() when the caller passes none.
        clock: Monotonic seconds. Tests pass a fake clock.
        sleep: Awaitable sleep. Tests pass one that advances the fake clock.
    """

    def __init__(
        self,
        repository: ApplicationRepository,
        poll_interval: float = OPERATION_POLL_INTERVAL,
        timeout_ms: int = OPERATION_TIMEOUT_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._poll_interval = poll_interval
        self._timeout_ms = timeout_ms
        self._clock = clock
        self._sleep = sleep

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    async def track(
        self,
        app: Application | ApplicationRef,
        timeout_ms: int | None = None,
        cancel: CancellationToken | None = None,
        on_phase: Callable[[OperationPhase], None] | None = None,
        since: str | None = None,
    ) -> OperationResult:
        """
        Wait for the Application's current operation to finish.

        Args:
            since: startedAt of an operation that finished before the sync was
                   requested (see previous_operation()). It is ignored.

        Raises:
            OperationCancelled: cancel was set before the operation finished.
            ArgoCDError: Fetching the Application failed (classified).
        """
        ref = app.ref if isinstance(app, Application) else app
        if timeout_ms is None:
            timeout_ms = self._timeout_ms
        log = logger.bind(context=ref.context, namespace=ref.namespace, name=ref.name)
        state = TrackingState.start(self._clock(), timeout_ms, since)
        log.debug("Tracking operation", timeout_ms=timeout_ms, since=since)

        result = await self._poll(ref, state, cancel, on_phase, log)
        if result.final_state is not None:
            self._repository.invalidate(ref.context, ref.namespace)
        log.info("Operation tracking finished", outcome=str(result.outcome))
        return result

    async def _poll(
        self,
        ref: ApplicationRef,
        state: TrackingState,
        cancel: CancellationToken | None,
        on_phase: Callable[[OperationPhase], None] | None,
        log: structlog.typing.FilteringBoundLogger,
    ) -> OperationResult:
        while True:
            self._check_cancelled(cancel, log)
            if state.expired(self._clock()):
                log.debug("Operation tracking deadline passed", polls=state.polls)
                return OperationResult.timed_out()

            current = await self._repository.get(ref.context, ref.name, ref.namespace)
            self._check_cancelled(cancel, log)

            previous = state.phase
            state = advance(state, current.last_operation, self._clock())
            if state.phase is not None and state.phase != previous:
                log.info("Operation phase changed", phase=str(state.phase))
                if on_phase:
                    on_phase(state.phase)
            if state.result is not None:
                log.debug("Operation tracking done", polls=state.polls)
                return state.result

            await self._pause(min(self._poll_interval, state.deadline - self._clock()), cancel)

    @staticmethod
    def _check_cancelled(cancel: CancellationToken | None, log: structlog.typing.FilteringBoundLogger) -> None:
        if cancel is not None and cancel.cancelled:
            log.info("Operation tracking cancelled")
            raise OperationCancelled("Operation tracking was cancelled")

    async def _pause(self, seconds: float, cancel: CancellationToken | None) -> None:
        """Sleep for seconds, returning early if cancel fires."""
        if seconds <= 0:
            return
        if cancel is None:
            await self._sleep(seconds)
            return

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)
