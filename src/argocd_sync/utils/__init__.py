# ABOUTME: Utilities package for the ArgoCD sync engine
# ABOUTME: Cluster API access, structured logging, and tool-surface guards

"""
Shared utilities:
    - client.py: Kubernetes API executor with retry logic
    - logging.py: Structured logging with correlation IDs and audit trail
    - safety.py: Read-only mode, rate limiting, hard-refresh confirmation
"""
