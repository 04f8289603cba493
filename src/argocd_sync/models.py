# ABOUTME: Typed domain model for ArgoCD installations, applications, and operations
# ABOUTME: Every type is an immutable snapshot; enums close the set of status codes

"""
Domain model for the ArgoCD engine.

=============================================================================
WHY FROZEN DATACLASSES?
=============================================================================

Every fetch produces a FRESH snapshot of cluster state. Nothing in this package
mutates an Application after it has been parsed, and callers may keep several
snapshots side by side (for example, the list view and the detail panel).

    @dataclass(frozen=True)

makes that a guarantee instead of a convention: assigning to a field raises
dataclasses.FrozenInstanceError. Collections are stored as tuples for the same
reason.

=============================================================================
WHY ENUMS FOR STATUS CODES?
=============================================================================

ArgoCD reports status as free-form strings ("Synced", "OutOfSync", ...). The
upstream schema evolves independently of this package, so a new value can show
up at any time. The parser maps every upstream string into one of these closed
sets and falls back to UNKNOWN, so the rest of the code can safely write:

    if app.health_status.code is HealthStatusCode.DEGRADED:
        ...

StrEnum members compare equal to their string values, which keeps output
formatting and JSON serialization trivial.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_ARGOCD_NAMESPACE = "argocd"
ARGOCD_APPLICATION_CRD = "applications.argoproj.io"
ARGOCD_SERVER_SELECTOR = "app.kubernetes.io/name=argocd-server"
ARGOCD_VERSION_LABEL = "app.kubernetes.io/version"
REFRESH_ANNOTATION = "argocd.argoproj.io/refresh"

DETECTION_CACHE_TTL = 300.0
APPLICATION_CACHE_TTL = 30.0
OPERATION_POLL_INTERVAL = 2.0
OPERATION_TIMEOUT_MS = 300_000


# =============================================================================
# STATUS ENUMERATIONS
# =============================================================================


class SyncStatusCode(StrEnum):
    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    UNKNOWN = "Unknown"


class HealthStatusCode(StrEnum):
    HEALTHY = "Healthy"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    SUSPENDED = "Suspended"
    MISSING = "Missing"
    UNKNOWN = "Unknown"


class OperationPhase(StrEnum):
    RUNNING = "Running"
    TERMINATING = "Terminating"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ERROR = "Error"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationPhase.SUCCEEDED, OperationPhase.FAILED, OperationPhase.ERROR)


class DetectionMode(StrEnum):
    """How an installation was found: from the operator's report or by querying the cluster."""

    OPERATED = "operated"
    BASIC = "basic"


class OperatorMode(StrEnum):
    """Health of the cooperating operator, derived from its status artifact."""

    BASIC = "basic"
    OPERATED = "operated"
    ENABLED = "enabled"
    DEGRADED = "degraded"


class OperationOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# =============================================================================
# INSTALLATION
# =============================================================================


@dataclass(frozen=True)
class InstallationStatus:
    """
    Whether ArgoCD is installed in a cluster, and where.

    Invariant: when installed is False, namespace and version are None.
    Construction fails otherwise, so an impossible status can never be cached.
    """

    installed: bool
    mode: DetectionMode
    detected_at: datetime
    namespace: str | None = None
    version: str | None = None
    operator_mode: OperatorMode | None = None

    def __post_init__(self) -> None:
        if not self.installed and (self.namespace is not None or self.version is not None):
            raise ValueError("namespace and version must be absent when ArgoCD is not installed")

    @classmethod
    def not_installed(
        cls,
        mode: DetectionMode,
        detected_at: datetime,
        operator_mode: OperatorMode | None = None,
    ) -> InstallationStatus:
        return cls(
            installed=False, mode=mode, detected_at=detected_at, operator_mode=operator_mode
        )


# =============================================================================
# APPLICATION AGGREGATE
# =============================================================================


@dataclass(frozen=True)
class ApplicationSource:
    repo_url: str = ""
    path: str = ""
    target_revision: str = "HEAD"
    chart: str | None = None


@dataclass(frozen=True)
class ApplicationDestination:
    server: str = ""
    namespace: str = ""
    name: str | None = None


@dataclass(frozen=True)
class SyncStatus:
    """Sync state; raw keeps an upstream value that did not map to a known code."""

    code: SyncStatusCode = SyncStatusCode.UNKNOWN
    revision: str = ""
    raw: str | None = None


@dataclass(frozen=True)
class HealthStatus:
    code: HealthStatusCode = HealthStatusCode.UNKNOWN
    message: str | None = None
    raw: str | None = None


@dataclass(frozen=True)
class ArgoCDResource:
    """Drift entry for one object managed by an Application."""

    kind: str
    name: str
    namespace: str = ""
    group: str = ""
    sync_status: SyncStatusCode = SyncStatusCode.UNKNOWN
    health_status: HealthStatusCode = HealthStatusCode.UNKNOWN
    message: str | None = None
    requires_pruning: bool = False


@dataclass(frozen=True)
class ResourceResult:
    kind: str
    name: str
    namespace: str = ""
    status: str = ""
    message: str | None = None
    hook_phase: str | None = None


@dataclass(frozen=True)
class SyncOperationResult:
    revision: str = ""
    resources: tuple[ResourceResult, ...] = ()


@dataclass(frozen=True)
class OperationState:
    phase: OperationPhase
    started_at: str = ""
    message: str | None = None
    finished_at: str | None = None
    sync_result: SyncOperationResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal


@dataclass(frozen=True)
class ApplicationRef:
    """Just enough to address an Application: cluster context, name, namespace."""

    context: str
    name: str
    namespace: str


@dataclass(frozen=True)
class Application:
    """
    One ArgoCD Application, normalized from its custom resource.

    FIELDS:
    -------
    - context: cluster context the snapshot was read from ("" if unknown)
    - name / namespace: where the Application resource itself lives
    - project: ArgoCD project (RBAC grouping)
    - source / destination: what is deployed, and where to
    - sync_status / health_status: always one of the enumerated codes
    - resources: per-object drift entries
    - last_operation: the most recent sync operation, if any
    - created_at / synced_at: upstream timestamps as ISO 8601 strings
    """

    name: str
    namespace: str
    project: str = "default"
    context: str = ""
    source: ApplicationSource = field(default_factory=ApplicationSource)
    destination: ApplicationDestination = field(default_factory=ApplicationDestination)
    sync_status: SyncStatus = field(default_factory=SyncStatus)
    health_status: HealthStatus = field(default_factory=HealthStatus)
    resources: tuple[ArgoCDResource, ...] = ()
    last_operation: OperationState | None = None
    created_at: str = ""
    synced_at: str | None = None

    @property
    def ref(self) -> ApplicationRef:
        return ApplicationRef(context=self.context, name=self.name, namespace=self.namespace)

    @property
    def out_of_sync_resources(self) -> tuple[ArgoCDResource, ...]:
        return tuple(r for r in self.resources if r.sync_status is SyncStatusCode.OUT_OF_SYNC)


# =============================================================================
# OPERATION TRACKING RESULT
# =============================================================================


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of tracking an operation: Succeeded(state), Failed(state), or TimedOut.

    TimedOut only means the client stopped waiting. The operation may still
    finish on the cluster; the next list refresh will show it.
    """

    outcome: OperationOutcome
    final_state: OperationState | None = None

    @classmethod
    def succeeded(cls, state: OperationState) -> OperationResult:
        return cls(OperationOutcome.SUCCEEDED, state)

    @classmethod
    def failed(cls, state: OperationState) -> OperationResult:
        return cls(OperationOutcome.FAILED, state)

    @classmethod
    def timed_out(cls) -> OperationResult:
        return cls(OperationOutcome.TIMED_OUT)

    @property
    def message(self) -> str:
        if self.outcome is OperationOutcome.TIMED_OUT:
            return "Timed out waiting for the operation; it may still complete on the cluster"
        state = self.final_state
        detail = state.message if state and state.message else ""
        phase = state.phase if state else self.outcome
        return f"Operation {phase}" + (f": {detail}" if detail else "")
