# ABOUTME: Error taxonomy for ArgoCD detection, query, and sync operations
# ABOUTME: Classifies raw cluster failures into a closed set of error kinds

"""
Error classification for cluster operations.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Every component in this package talks to a Kubernetes cluster through a
"cluster command executor". Executors fail in many different ways:

- The API server answers 403 because the service account lacks RBAC
- The Application was deleted between a list and a get (404)
- The API server is unreachable (DNS failure, connection refused)
- A request takes too long and the client gives up

This module turns any of those raw failures into ONE of five error kinds,
so that every component applies the same policy:

    ErrorKind.PERMISSION  -> non-retryable, surfaced immediately
    ErrorKind.NOT_FOUND   -> empty result for reads, propagated for writes
    ErrorKind.NETWORK     -> reads may fall back to the last cached snapshot
    ErrorKind.TIMEOUT     -> the caller may retry at its discretion
    ErrorKind.UNKNOWN     -> logged with full detail and surfaced as-is

=============================================================================
TWO EXCEPTION FAMILIES
=============================================================================

1. ClusterError: the RAW failure raised by an executor. It carries the HTTP
   status code and the Kubernetes Status reason/message when available.

2. ArgoCDError: the CLASSIFIED failure raised by this package's components.
   Subclasses exist per kind so callers can write:

       try:
           await actions.sync(app)
       except ArgoCDPermissionError:
           ...
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Any

import httpx

# Markers are matched against the lower-cased error text, in this order.
PERMISSION_MARKERS = (
    "forbidden",
    "unauthorized",
    "permission denied",
    "access denied",
    "not authorized",
    "authentication",
)

NOT_FOUND_MARKERS = (
    "notfound",
    "not found",
    "the server could not find the requested resource",
)

NETWORK_MARKERS = (
    "connection refused",
    "could not resolve",
    "no such host",
    "name or service not known",
    "unreachable",
    "dial tcp",
    "unable to connect",
    "connection reset",
    "network",
)

TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "deadline exceeded",
)


class ErrorKind(StrEnum):
    """Closed taxonomy of failure kinds."""

    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ClusterError(Exception):
    """
    Raw failure reported by a cluster command executor.

    Kubernetes API errors come back as a "Status" object:

        {"kind": "Status", "status": "Failure", "reason": "Forbidden",
         "message": "applications.argoproj.io is forbidden: ...", "code": 403}

    ClusterError keeps the useful parts of that object so ErrorClassifier can
    inspect them without knowing anything about HTTP.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        reason: str | None = None,
        details: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        code = f"{self.status_code} " if self.status_code is not None else ""
        reason = self.reason or "Error"
        base = f"Kubernetes API error ({code}{reason}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class ArgoCDError(Exception):
    """Classified failure raised by detector, repository, actions, and tracker."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        context: str | None = None,
        raw: Any = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        self.message = message
        self.context = context
        self.raw = raw
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Short explanation suitable for a status line or tool response."""
        return USER_MESSAGES[self.kind]

    def __str__(self) -> str:
        where = f" [{self.context}]" if self.context else ""
        return f"ArgoCD error ({self.kind}){where}: {self.message}"


class ArgoCDPermissionError(ArgoCDError):
    kind = ErrorKind.PERMISSION


class ArgoCDNotFoundError(ArgoCDError):
    kind = ErrorKind.NOT_FOUND


class ArgoCDNetworkError(ArgoCDError):
    kind = ErrorKind.NETWORK


class ArgoCDTimeoutError(ArgoCDError):
    kind = ErrorKind.TIMEOUT


class OperationCancelled(Exception):
    """Raised when the caller cancels operation tracking."""


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.PERMISSION: "Cannot perform operation, check access (RBAC permissions).",
    ErrorKind.NOT_FOUND: "The resource or namespace no longer exists.",
    ErrorKind.NETWORK: "The cluster is unreachable.",
    ErrorKind.TIMEOUT: "The request timed out; the operation may still be in progress.",
    ErrorKind.UNKNOWN: "Unexpected error while talking to the cluster.",
}

_ERROR_CLASSES: dict[ErrorKind, type[ArgoCDError]] = {
    ErrorKind.PERMISSION: ArgoCDPermissionError,
    ErrorKind.NOT_FOUND: ArgoCDNotFoundError,
    ErrorKind.NETWORK: ArgoCDNetworkError,
    ErrorKind.TIMEOUT: ArgoCDTimeoutError,
    ErrorKind.UNKNOWN: ArgoCDError,
}


def error_text(raw: Any) -> str:
    """Flatten a raw failure into one string for marker matching."""
    if isinstance(raw, ClusterError):
        parts = [raw.reason or "", raw.message, raw.details or ""]
        return " ".join(p for p in parts if p)
    if isinstance(raw, BaseException):
        text = str(raw)
        # Subprocess-style failures keep the useful text on stderr
        stderr = getattr(raw, "stderr", None)
        if isinstance(stderr, bytes):
            stderr = stderr.decode(errors="replace")
        if isinstance(stderr, str) and stderr.strip():
            text = f"{stderr.strip()} {text}"
        return text
    return str(raw)


def classify(raw: Any) -> ErrorKind:
    """
    Map a raw executor failure to an ErrorKind.

    Inspection order: permission markers, not-found markers, network markers,
    timeout markers, otherwise unknown. Structured signals (HTTP status codes,
    httpx exception types) are checked alongside the text markers of the same
    tier.

    Examples:
        >>> classify(ClusterError("nope", status_code=403, reason="Forbidden"))
        <ErrorKind.PERMISSION: 'permission'>
        >>> classify("dial tcp 10.0.0.1:6443: connect: connection refused")
        <ErrorKind.NETWORK: 'network'>
    """
    if isinstance(raw, ArgoCDError):
        return raw.kind

    status_code = getattr(raw, "status_code", None)
    text = error_text(raw).lower()

    if status_code in (401, 403) or any(m in text for m in PERMISSION_MARKERS):
        return ErrorKind.PERMISSION
    if status_code == 404 or any(m in text for m in NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND
    if isinstance(raw, httpx.NetworkError) or any(m in text for m in NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if isinstance(raw, httpx.TimeoutException | asyncio.TimeoutError | TimeoutError):
        return ErrorKind.TIMEOUT
    if status_code == 504 or any(m in text for m in TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    """Only transient failures are worth retrying."""
    return kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT)


def is_transient(kind: ErrorKind) -> bool:
    """
    True when a failure says nothing about what exists on the cluster.

    Reads that hit one keep serving the last result they saw. Unknown counts:
    an unexplained failure is no evidence that a resource is gone.
    """
    return is_retryable(kind) or kind is ErrorKind.UNKNOWN


def to_argocd_error(raw: Any, context: str | None = None) -> ArgoCDError:
    """Build the classified exception for a raw failure."""
    if isinstance(raw, ArgoCDError):
        return raw
    kind = classify(raw)
    return _ERROR_CLASSES[kind](error_text(raw) or type(raw).__name__, kind, context, raw)
