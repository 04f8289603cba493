# ABOUTME: MCP server exposing ArgoCD detection, listing, sync, and tracking tools
# ABOUTME: Tools are guarded by read-only mode and rate limits, and audit-logged

"""MCP tool surface for the ArgoCD sync engine."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from argocd_sync.config import EngineSettings, load_settings
from argocd_sync.engine import ArgoCDEngine
from argocd_sync.errors import ArgoCDError
from argocd_sync.models import (
    Application,
    ApplicationRef,
    HealthStatusCode,
    OperationPhase,
    SyncStatusCode,
)
from argocd_sync.utils.client import ClusterExecutor
from argocd_sync.utils.logging import AuditLogger, configure_logging, set_correlation_id
from argocd_sync.utils.safety import ActionGuard, ConfirmationRequired

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)

_settings: EngineSettings | None = None
_executor: ClusterExecutor | None = None
_engine: ArgoCDEngine | None = None
_guard: ActionGuard | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Load settings, open one API client per cluster context, build the engine."""
    global _settings, _executor, _engine, _guard, _audit_logger

    logger.info("Starting ArgoCD sync server")

    _settings = load_settings()
    configure_logging(level=_settings.log_level, json_output=_settings.json_logs)
    _guard = ActionGuard(_settings.security)
    _audit_logger = AuditLogger(_settings.security.audit_log)

    _executor = ClusterExecutor(_settings.all_contexts, timeout=_settings.request_timeout)
    await _executor.__aenter__()
    for context in _settings.all_contexts:
        logger.info("Cluster context configured", context=context.name, server=context.server)
    _engine = ArgoCDEngine.from_settings(_executor, _settings, audit_logger=_audit_logger)

    yield {"settings": _settings, "engine": _engine}

    await _executor.__aexit__(None, None, None)
    _executor = None
    _engine = None
    logger.info("ArgoCD sync server stopped")


mcp = FastMCP("argocd-sync", lifespan=lifespan)


def get_settings() -> EngineSettings:
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_engine() -> ArgoCDEngine:
    if not _engine:
        raise RuntimeError("Server not initialized")
    return _engine


def get_guard() -> ActionGuard:
    if not _guard:
        raise RuntimeError("Server not initialized")
    return _guard


def get_audit_logger() -> AuditLogger:
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


def resolve_context(name: str | None) -> str:
    """Explicit context name, else the first configured one."""
    settings = get_settings()
    if name:
        if settings.get_context(name) is None:
            available = [c.name for c in settings.all_contexts]
            raise ValueError(f"Unknown cluster context '{name}'. Available: {available}")
        return name
    contexts = settings.all_contexts
    if not contexts:
        raise ValueError("No cluster context configured. Set KUBE_API_SERVER.")
    return contexts[0].name


async def resolve_namespace(context: str, namespace: str | None) -> str | None:
    """Explicit namespace, else the detected ArgoCD namespace (None if absent)."""
    if namespace:
        return namespace
    status = await get_engine().detector.resolve(context)
    return status.namespace if status.installed else None


def _bind_request(ctx: MCPContext) -> None:
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")


def _timeout_ms(seconds: int | None) -> int | None:
    """None leaves the configured operation timeout in charge."""
    return seconds * 1000 if seconds is not None else None


# =============================================================================
# FORMATTING
# =============================================================================


def format_application_line(app: Application) -> str:
    health = app.health_status.code
    sync = app.sync_status.code
    health_marker = "[OK]" if health is HealthStatusCode.HEALTHY else "[!]"
    sync_marker = "[OK]" if sync is SyncStatusCode.SYNCED else "[!]"
    return (
        f"- {app.name} [{app.project}] "
        f"health={health} {health_marker} "
        f"sync={sync} {sync_marker} "
        f"dest={app.destination.namespace}@{app.destination.server or app.destination.name or '?'}"
    )


def format_application_detail(app: Application) -> str:
    lines = [
        f"Application: {app.name}",
        f"Project: {app.project}",
        f"Namespace: {app.namespace}",
        f"Context: {app.context}",
        "",
        "Source:",
        f"  Repository: {app.source.repo_url}",
        f"  Path: {app.source.path or '-'}",
        f"  Target Revision: {app.source.target_revision}",
    ]
    if app.source.chart:
        lines.append(f"  Chart: {app.source.chart}")
    lines.extend(
        [
            "",
            "Destination:",
            f"  Server: {app.destination.server or app.destination.name or '-'}",
            f"  Namespace: {app.destination.namespace}",
            "",
            "Status:",
            f"  Sync: {app.sync_status.code}"
            + (f" (reported: {app.sync_status.raw})" if app.sync_status.raw else "")
            + (f" @ {app.sync_status.revision[:12]}" if app.sync_status.revision else ""),
            f"  Health: {app.health_status.code}"
            + (f" - {app.health_status.message}" if app.health_status.message else ""),
        ]
    )
    if app.synced_at:
        lines.append(f"  Last synced: {app.synced_at}")

    operation = app.last_operation
    if operation:
        lines.extend(["", f"Last operation: {operation.phase}"])
        if operation.message:
            lines.append(f"  Message: {operation.message}")
        if operation.started_at:
            lines.append(f"  Started: {operation.started_at}")
        if operation.finished_at:
            lines.append(f"  Finished: {operation.finished_at}")

    drifted = app.out_of_sync_resources
    if drifted:
        lines.extend(["", f"Out of sync resources ({len(drifted)}):"])
        for resource in drifted:
            location = f"{resource.namespace}/" if resource.namespace else ""
            prune = " (requires pruning)" if resource.requires_pruning else ""
            lines.append(f"  - {resource.kind} {location}{resource.name}{prune}")
    return "\n".join(lines)


def format_error(error: ArgoCDError) -> str:
    return f"{error.user_message}\n{error}"


# =============================================================================
# READ TOOLS
# =============================================================================


class DetectParams(BaseModel):
    context: str | None = Field(default=None, description="Cluster context name")
    refresh: bool = Field(default=False, description="Bypass the detection cache")


@mcp.tool()
async def detect_argocd(params: DetectParams, ctx: MCPContext) -> str:
    """
    Check whether ArgoCD is installed in a cluster.

    Reports the namespace and version when found, and whether the answer came
    from the in-cluster operator or from querying the API server.
    """
    _bind_request(ctx)

    blocked = get_guard().check_read("detect_argocd")
    if blocked:
        get_audit_logger().log_blocked("detect_argocd", params.context or "default", blocked.reason)
        return blocked.format_message()

    context = resolve_context(params.context)
    status = await get_engine().detector.resolve(context, bypass_cache=params.refresh)
    get_audit_logger().log_read("detect_argocd", context)

    lines = [f"Cluster context: {context}"]
    if status.installed:
        lines.append(f"ArgoCD: installed in namespace '{status.namespace}'")
        lines.append(f"Version: {status.version or 'unknown'}")
    else:
        lines.append("ArgoCD: not installed")
    lines.append(f"Detection: {status.mode}")
    if status.operator_mode:
        lines.append(f"Operator: {status.operator_mode}")
    lines.append(f"Checked at: {status.detected_at.isoformat()}")
    return "\n".join(lines)


class ListApplicationsParams(BaseModel):
    context: str | None = Field(default=None, description="Cluster context name")
    namespace: str | None = Field(
        default=None, description="Namespace of the Application resources (default: detected)"
    )
    health_status: HealthStatusCode | None = Field(default=None, description="Filter by health")
    sync_status: SyncStatusCode | None = Field(default=None, description="Filter by sync status")
    refresh: bool = Field(default=False, description="Bypass the application cache")


@mcp.tool()
async def list_applications(params: ListApplicationsParams, ctx: MCPContext) -> str:
    """
    List ArgoCD applications with their sync and health status.

    Without a namespace the ArgoCD installation is detected first. When the
    cluster cannot be reached the last list seen is returned instead.
    """
    _bind_request(ctx)

    blocked = get_guard().check_read("list_applications")
    if blocked:
        get_audit_logger().log_blocked("list_applications", "all", blocked.reason)
        return blocked.format_message()

    context = resolve_context(params.context)
    namespace = await resolve_namespace(context, params.namespace)
    if namespace is None:
        return f"ArgoCD is not installed in cluster context '{context}'."

    apps = await get_engine().repository.list(context, namespace, bypass_cache=params.refresh)
    if params.health_status:
        apps = [a for a in apps if a.health_status.code is params.health_status]
    if params.sync_status:
        apps = [a for a in apps if a.sync_status.code is params.sync_status]

    get_audit_logger().log_read("list_applications", f"{context}/{namespace}")

    if not apps:
        return "No applications found matching the specified filters."
    lines = [f"Found {len(apps)} application(s) in {context}/{namespace}:", ""]
    lines.extend(format_application_line(app) for app in apps)
    return "\n".join(lines)


class ApplicationParams(BaseModel):
    name: str = Field(description="Application name")
    namespace: str | None = Field(
        default=None, description="Namespace of the Application resource (default: detected)"
    )
    context: str | None = Field(default=None, description="Cluster context name")


@mcp.tool()
async def get_application(params: ApplicationParams, ctx: MCPContext) -> str:
    """
    Show one application: source, destination, status, last operation, drift.
    """
    _bind_request(ctx)

    blocked = get_guard().check_read("get_application")
    if blocked:
        get_audit_logger().log_blocked("get_application", params.name, blocked.reason)
        return blocked.format_message()

    context = resolve_context(params.context)
    namespace = await resolve_namespace(context, params.namespace)
    if namespace is None:
        return f"ArgoCD is not installed in cluster context '{context}'."

    try:
        app = await get_engine().repository.get(context, params.name, namespace)
    except ArgoCDError as e:
        get_audit_logger().log_error("get_application", params.name, str(e))
        return format_error(e)

    get_audit_logger().log_read("get_application", f"{context}/{namespace}/{params.name}")
    return format_application_detail(app)


# =============================================================================
# WRITE TOOLS
# =============================================================================


class SyncApplicationParams(ApplicationParams):
    wait: bool = Field(default=False, description="Track the operation until it finishes")
    timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        le=3600,
        description="How long to wait when wait=true (default: ARGOCD_SYNC_OPERATION_TIMEOUT)",
    )


@mcp.tool()
async def sync_application(params: SyncApplicationParams, ctx: MCPContext) -> str:
    """
    Ask ArgoCD to sync an application with Git.

    Blocked in read-only mode. With wait=true the operation is tracked until it
    succeeds, fails, or the timeout passes.
    """
    _bind_request(ctx)

    blocked = get_guard().check_write("sync_application")
    if blocked:
        get_audit_logger().log_blocked("sync_application", params.name, blocked.reason)
        return blocked.format_message()

    context = resolve_context(params.context)
    namespace = await resolve_namespace(context, params.namespace)
    if namespace is None:
        return f"ArgoCD is not installed in cluster context '{context}'."
    ref = ApplicationRef(context=context, name=params.name, namespace=namespace)
    engine = get_engine()

    try:
        await ctx.report_progress(0, 2, f"Requesting sync for {params.name}")
        if not params.wait:
            await engine.actions.sync(ref)
            await ctx.report_progress(2, 2, "Sync requested")
            return (
                f"Sync requested for '{params.name}'\n\n"
                f"Use track_operation to follow progress."
            )

        await ctx.report_progress(1, 2, "Tracking operation")
        result = await engine.sync_and_track(ref, timeout_ms=_timeout_ms(params.timeout_seconds))
        await ctx.report_progress(2, 2, "Complete")
    except ArgoCDError as e:
        get_audit_logger().log_error("sync_application", params.name, str(e))
        return format_error(e)

    return f"Sync of '{params.name}': {result.message}"


class RefreshApplicationParams(ApplicationParams):
    hard: bool = Field(default=False, description="Also discard ArgoCD's manifest cache")
    confirm: bool = Field(default=False, description="Required for hard=true")
    confirm_name: str | None = Field(
        default=None, description="Must equal the application name for hard=true"
    )


@mcp.tool()
async def refresh_application(params: RefreshApplicationParams, ctx: MCPContext) -> str:
    """
    Ask ArgoCD to re-compare an application with Git.

    hard=true also regenerates manifests from scratch and needs confirm=true
    and confirm_name set to the application name.
    """
    _bind_request(ctx)
    action = "hard_refresh" if params.hard else "refresh_application"

    guard = get_guard()
    if params.hard:
        check = guard.check_hard_refresh(params.name, params.confirm, params.confirm_name)
    else:
        check = guard.check_write(action)
    if check:
        reason = "confirmation required" if isinstance(check, ConfirmationRequired) else check.reason
        get_audit_logger().log_blocked(action, params.name, reason)
        return check.format_message()

    context = resolve_context(params.context)
    namespace = await resolve_namespace(context, params.namespace)
    if namespace is None:
        return f"ArgoCD is not installed in cluster context '{context}'."
    ref = ApplicationRef(context=context, name=params.name, namespace=namespace)

    actions = get_engine().actions
    try:
        if params.hard:
            await actions.hard_refresh(ref)
        else:
            await actions.refresh(ref)
    except ArgoCDError as e:
        get_audit_logger().log_error(action, params.name, str(e))
        return format_error(e)

    kind = "Hard refresh" if params.hard else "Refresh"
    return f"{kind} requested for '{params.name}'"


class TrackOperationParams(ApplicationParams):
    timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        le=3600,
        description="Give up after this many seconds (default: ARGOCD_SYNC_OPERATION_TIMEOUT)",
    )


@mcp.tool()
async def track_operation(params: TrackOperationParams, ctx: MCPContext) -> str:
    """
    Wait for an application's current operation to finish and report the outcome.
    """
    _bind_request(ctx)

    blocked = get_guard().check_read("track_operation")
    if blocked:
        get_audit_logger().log_blocked("track_operation", params.name, blocked.reason)
        return blocked.format_message()

    context = resolve_context(params.context)
    namespace = await resolve_namespace(context, params.namespace)
    if namespace is None:
        return f"ArgoCD is not installed in cluster context '{context}'."
    ref = ApplicationRef(context=context, name=params.name, namespace=namespace)

    phases: list[OperationPhase] = []
    try:
        result = await get_engine().tracker.track(
            ref, timeout_ms=_timeout_ms(params.timeout_seconds), on_phase=phases.append
        )
    except ArgoCDError as e:
        get_audit_logger().log_error("track_operation", params.name, str(e))
        return format_error(e)

    get_audit_logger().log_read("track_operation", f"{context}/{namespace}/{params.name}")
    lines = [f"'{params.name}': {result.message}"]
    if phases:
        lines.append("Phases: " + " -> ".join(str(p) for p in phases))
    if result.final_state and result.final_state.sync_result:
        sync_result = result.final_state.sync_result
        lines.append(f"Revision: {sync_result.revision or '-'}")
        for resource in sync_result.resources:
            detail = f": {resource.message}" if resource.message else ""
            lines.append(f"  - {resource.kind} {resource.name} {resource.status}{detail}")
    return "\n".join(lines)


# =============================================================================
# RESOURCES
# =============================================================================


@mcp.resource("argocd://contexts")
async def get_contexts_resource() -> str:
    """Configured cluster contexts."""
    contexts = get_settings().all_contexts
    if not contexts:
        return "No cluster contexts configured"
    lines = ["Configured cluster contexts:", ""]
    for context in contexts:
        tls = " (TLS verification off)" if context.insecure else ""
        lines.append(f"- {context.name}: {context.server}{tls}")
    return "\n".join(lines)


@mcp.resource("argocd://security")
async def get_security_resource() -> str:
    sec = get_settings().security
    return (
        "Security Settings:\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Audit log: {sec.audit_log or 'structlog'}\n"
        f"  Rate limit: {sec.rate_limit_calls} calls per {sec.rate_limit_window}s"
    )


def main() -> None:
    """Run the MCP server over stdio."""
    configure_logging(level="INFO")
    logger.info("ArgoCD sync server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
