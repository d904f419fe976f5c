"""
proxmox-mcp-pro: A secure MCP server for Proxmox VE.

This package provides an authenticated, rate-limited and audited client for the
Proxmox VE API, plus a Model Context Protocol (MCP) server exposing VM,
container, node and storage operations.
"""

from .audit import AuditEntry, AuditLog, AuditResult, sanitize
from .authz import OperationPolicy, RateLimiter
from .config import AppConfig, ProxmoxConfig, load_config
from .dispatcher import RequestDispatcher, RetryState
from .errors import (
    AuthenticationFailed,
    ConfigurationError,
    HTTPError,
    InvalidAuthResponse,
    ProxmoxError,
    RateLimitExceeded,
    RetryExhausted,
    TransportError,
)
from .proxmox_client import ProxmoxClient
from .session import Credentials, PasswordCredential, SessionManager, SessionState, TokenCredential
from .transport import RequestsTransport, Transport, TransportResponse

__version__ = "0.1.0"

__all__ = [
    # Client
    "ProxmoxClient",
    "RequestDispatcher",
    "RetryState",
    "RequestsTransport",
    "Transport",
    "TransportResponse",
    # Config
    "AppConfig",
    "ProxmoxConfig",
    "load_config",
    # Auth
    "Credentials",
    "PasswordCredential",
    "TokenCredential",
    "SessionManager",
    "SessionState",
    "OperationPolicy",
    "RateLimiter",
    # Audit
    "AuditEntry",
    "AuditLog",
    "AuditResult",
    "sanitize",
    # Errors
    "ProxmoxError",
    "ConfigurationError",
    "RateLimitExceeded",
    "AuthenticationFailed",
    "InvalidAuthResponse",
    "HTTPError",
    "TransportError",
    "RetryExhausted",
]
