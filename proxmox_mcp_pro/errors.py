from __future__ import annotations

from typing import Any, Dict, List, Optional


class ProxmoxError(Exception):
    """Base class for every error raised by the Proxmox client."""


class ConfigurationError(ProxmoxError):
    """Missing or malformed configuration or credentials."""


class RateLimitExceeded(ProxmoxError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message)


class AuthenticationFailed(ProxmoxError):
    """The credential exchange itself failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Authentication failed: {message}")


class InvalidAuthResponse(AuthenticationFailed):
    def __init__(self, message: str = "Invalid authentication response"):
        super().__init__(message)


class TransportError(ProxmoxError):
    """Network-level failure: connection refused, TLS error, timeout."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class RetryExhausted(ProxmoxError):
    def __init__(self, retries: int, path: Optional[str] = None):
        self.retries = retries
        self.path = path
        msg = f"Authentication rejected after {retries} retries"
        if path:
            msg += f" on {path}"
        super().__init__(msg)


class HTTPError(ProxmoxError):
    """Exception raised when the Proxmox API returns an error response."""

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Optional[Dict[str, Any]] = None,
        path: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body if isinstance(response_body, dict) else {}
        self.path = path

        self.error_messages = self._extract_error_messages()

        detail = f"HTTP {status_code}"
        if path:
            detail += f" on {path}"
        if self.error_messages:
            detail += f": {'; '.join(self.error_messages)}"

        super().__init__(f"{message}: {detail}")

    def _extract_error_messages(self) -> List[str]:
        """Extract human-readable error messages from a Proxmox response."""
        messages = []

        # Parameter validation: {"errors": {"vmid": "value must be >= 100"}}
        errors = self.response_body.get("errors")
        if isinstance(errors, dict):
            for field, msg in errors.items():
                messages.append(f"{field}: {msg}".strip())
        elif isinstance(errors, list):
            messages.extend(str(e) for e in errors)

        if "message" in self.response_body:
            messages.append(str(self.response_body["message"]).strip())

        return messages

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500
