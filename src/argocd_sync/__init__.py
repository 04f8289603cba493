# ABOUTME: ArgoCD detection, query, and sync engine package
# ABOUTME: Exposes the engine session, domain model, and version information

"""
argocd-sync: detect ArgoCD in a cluster, read its Applications, sync them,
and follow the resulting operations to completion.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_sync/
├── __init__.py          <- Package entry point
├── models.py            <- Frozen domain model and constants
├── errors.py            <- Error taxonomy and classification
├── cache.py             <- TTL cache shared by one engine session
├── parser.py            <- Raw Application resource -> Application
├── operator_status.py   <- Operator status ConfigMap (detection tier 1)
├── detector.py          <- InstallationDetector
├── repository.py        <- ApplicationRepository (list / get)
├── actions.py           <- ActionExecutor (sync / refresh / hard refresh)
├── tracker.py           <- OperationTracker and its state machine
├── engine.py            <- ArgoCDEngine, wires everything together
├── config.py            <- pydantic-settings configuration
├── server.py            <- MCP tools over the engine
└── utils/
    ├── client.py        <- Kubernetes API executor (httpx)
    ├── logging.py       <- structlog setup and audit trail
    └── safety.py        <- Read-only mode, rate limits, confirmation

Library use:

    >>> from argocd_sync import ArgoCDEngine, ClusterExecutor
    >>> import argocd_sync
    >>> argocd_sync.__version__
    '0.1.0'
"""

from argocd_sync.engine import ArgoCDEngine
from argocd_sync.errors import ArgoCDError, ErrorKind, OperationCancelled, classify
from argocd_sync.models import Application, ApplicationRef, InstallationStatus, OperationResult
from argocd_sync.tracker import CancellationToken
from argocd_sync.utils.client import ClusterExecutor

__version__ = "0.1.0"

__all__ = [
    "Application",
    "ApplicationRef",
    "ArgoCDEngine",
    "ArgoCDError",
    "CancellationToken",
    "ClusterExecutor",
    "ErrorKind",
    "InstallationStatus",
    "OperationCancelled",
    "OperationResult",
    "__version__",
    "classify",
]
