# ABOUTME: Configuration management for the ArgoCD sync engine
# ABOUTME: Handles environment variables, cluster contexts, timings, and security modes

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module holds every tunable of the engine:

1. WHICH CLUSTERS to talk to (API server URL, token, TLS verification)
2. HOW LONG things are cached and how often operations are polled
3. WHAT the MCP tool surface is allowed to do (read-only mode, rate limits)

Values come from environment variables (or an optional .env file), are
validated on load, and are exposed as typed attributes.

=============================================================================
ARCHITECTURE: THREE CONFIGURATION CLASSES
=============================================================================

1. ClusterContext: connection settings for ONE cluster
   - name, API server URL, bearer token, TLS settings

2. SecuritySettings: guards for the tool surface (ARGOCD_SYNC_ prefix)
   - read-only mode, audit log path, rate limiting

3. EngineSettings: the top-level container
   - primary cluster context from KUBE_* variables
   - additional contexts for multi-cluster setups
   - cache TTLs, polling cadence, timeouts, log level
   - nested SecuritySettings

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Primary cluster context:
    KUBE_API_SERVER     -> Kubernetes API server URL
    KUBE_TOKEN          -> Bearer token (service account or user token)
    KUBE_INSECURE       -> Skip TLS certificate verification
    KUBE_CONTEXT        -> Name used to address the primary context

Engine settings (ARGOCD_SYNC_ prefix):
    ARGOCD_SYNC_DETECTION_TTL       -> Installation detection cache (seconds)
    ARGOCD_SYNC_APPLICATION_TTL     -> Application list cache (seconds)
    ARGOCD_SYNC_POLL_INTERVAL       -> Operation polling cadence (seconds)
    ARGOCD_SYNC_OPERATION_TIMEOUT   -> Default tracking timeout (seconds), used
                                       by sync_and_track and the MCP tools
    ARGOCD_SYNC_OPERATOR_NAMESPACE  -> Where the operator status ConfigMap lives
    ARGOCD_SYNC_ARGOCD_NAMESPACE    -> Namespace reported when detection names none
    ARGOCD_SYNC_LOG_LEVEL           -> DEBUG, INFO, WARNING, ERROR, CRITICAL

Security settings:
    ARGOCD_SYNC_READ_ONLY           -> Block sync/refresh tools (default: true)
    ARGOCD_SYNC_AUDIT_LOG           -> Path to JSON-lines audit log
    ARGOCD_SYNC_RATE_LIMIT_CALLS    -> Max tool calls per window
    ARGOCD_SYNC_RATE_LIMIT_WINDOW   -> Rate limit window in seconds
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from argocd_sync.models import (
    APPLICATION_CACHE_TTL,
    DEFAULT_ARGOCD_NAMESPACE,
    DETECTION_CACHE_TTL,
    OPERATION_POLL_INTERVAL,
    OPERATION_TIMEOUT_MS,
)

# =============================================================================
# CLUSTER CONTEXT
# =============================================================================


class ClusterContext(BaseModel):
    """
    Connection settings for a single Kubernetes cluster.

    The name is what every engine operation takes as its "cluster context"
    argument; it is also part of every cache key, which is what keeps two
    clusters from ever seeing each other's cached data.

    USAGE EXAMPLE:
    --------------
        ctx = ClusterContext(
            name="prod",
            server="https://k8s.prod.example.com:6443",
            token=SecretStr("eyJhbGciOi..."),
        )
    """

    model_config = {"extra": "ignore"}

    name: str = Field(default="default", description="Context identifier")
    server: str = Field(description="Kubernetes API server URL")
    token: SecretStr = Field(default=SecretStr(""), description="Bearer token")
    # SecretStr prints as "**********"; use token.get_secret_value() to read it.
    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        """
        Ensure the URL has a scheme and no trailing slash.

        "k8s.example.com:6443"  -> "https://k8s.example.com:6443"
        "https://k8s.local/"    -> "https://k8s.local"

        API paths start with "/", so a trailing slash would produce "//apis".
        """
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Guards for the MCP tool surface.

    The engine itself has no notion of "allowed"; these settings are consulted
    by ActionGuard before a tool issues a mutation.

    Layer 1: ARGOCD_SYNC_READ_ONLY=true (default)
        - sync and refresh tools are blocked, reads still work

    Layer 2: Rate limiting
        - a runaway client cannot hammer the API server

    Layer 3: Confirmation
        - hard refresh needs confirm=true AND confirm_name matching the app
    """

    model_config = SettingsConfigDict(env_prefix="ARGOCD_SYNC_")

    read_only: bool = Field(
        default=True,
        description="Block sync and refresh operations when true",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # None sends audit entries through structlog instead of a file.

    rate_limit_calls: int = Field(
        default=100,
        description="Maximum tool calls per window",
    )

    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )


# =============================================================================
# ENGINE SETTINGS
# =============================================================================


class EngineSettings(BaseSettings):
    """
    Top-level configuration container.

    USAGE:
    ------
        settings = load_settings()
        settings.primary_context        # ClusterContext from KUBE_* vars
        settings.detection_ttl          # 300.0
        settings.security.read_only     # True
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_SYNC_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
        # Field name OR alias: both KUBE_API_SERVER and kube_api_server work
    )

    # -------------------------------------------------------------------------
    # PRIMARY CLUSTER CONTEXT (from environment)
    # -------------------------------------------------------------------------

    kube_api_server: str = Field(
        default="",
        validation_alias="KUBE_API_SERVER",
        description="Primary Kubernetes API server URL",
    )

    kube_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="KUBE_TOKEN",
        description="Primary bearer token",
    )
    # A service account token can be created with:
    #    kubectl -n argocd create token <service-account>

    kube_insecure: bool = Field(
        default=False,
        validation_alias="KUBE_INSECURE",
        description="Skip TLS verification for the primary context",
    )

    kube_context: str = Field(
        default="default",
        validation_alias="KUBE_CONTEXT",
        description="Name of the primary context",
    )

    additional_contexts: list[ClusterContext] = Field(
        default_factory=list,
        description="Additional cluster contexts",
    )
    # JSON array in ARGOCD_SYNC_ADDITIONAL_CONTEXTS.

    # -------------------------------------------------------------------------
    # CACHING AND POLLING
    # -------------------------------------------------------------------------

    detection_ttl: float = Field(default=DETECTION_CACHE_TTL, gt=0)
    # Installation status rarely changes; five minutes keeps cluster lookups rare.

    application_ttl: float = Field(default=APPLICATION_CACHE_TTL, gt=0)
    # Short, because sync and health status move quickly.

    poll_interval: float = Field(default=OPERATION_POLL_INTERVAL, gt=0)

    operation_timeout: float = Field(default=OPERATION_TIMEOUT_MS / 1000, gt=0)
    # Seconds. OperationTracker.track() takes milliseconds; see timeout_ms.

    request_timeout: float = Field(default=10.0, gt=0)
    # Per HTTP request to the API server.

    # -------------------------------------------------------------------------
    # DISCOVERY HINTS
    # -------------------------------------------------------------------------

    operator_namespace: str | None = Field(
        default=None,
        description="Namespace holding the operator status ConfigMap",
    )

    argocd_namespace: str = Field(
        default=DEFAULT_ARGOCD_NAMESPACE,
        description="Namespace assumed when a server workload reports none",
    )

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    json_logs: bool = Field(default=False, description="Render logs as JSON lines")

    security: SecuritySettings = Field(default_factory=SecuritySettings)

    # -------------------------------------------------------------------------
    # COMPUTED PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def timeout_ms(self) -> int:
        """Default tracking timeout in milliseconds."""
        return int(self.operation_timeout * 1000)

    @property
    def primary_context(self) -> ClusterContext | None:
        """Primary context from KUBE_* variables, or None if no server is set."""
        if not self.kube_api_server:
            return None
        return ClusterContext(
            name=self.kube_context,
            server=self.kube_api_server,
            token=self.kube_token,
            insecure=self.kube_insecure,
        )

    @property
    def all_contexts(self) -> list[ClusterContext]:
        contexts = []
        if self.primary_context:
            contexts.append(self.primary_context)
        contexts.extend(self.additional_contexts)
        return contexts

    def get_context(self, name: str) -> ClusterContext | None:
        for context in self.all_contexts:
            if context.name == name:
                return context
        return None


def load_settings() -> EngineSettings:
    """
    Load settings from the environment with validation.

    If ARGOCD_SYNC_ENV_FILE is set, variables are also read from that file:

        KUBE_API_SERVER=https://127.0.0.1:6443
        KUBE_TOKEN=dev-token
        KUBE_INSECURE=true
        ARGOCD_SYNC_READ_ONLY=false

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return EngineSettings(
        _env_file=os.environ.get("ARGOCD_SYNC_ENV_FILE"),
    )
