from __future__ import annotations

import os
from typing import Optional, Set

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .session import Credentials, PasswordCredential, TokenCredential


class ProxmoxConfig(BaseModel):
    host: str = Field(pattern=r"^[a-zA-Z0-9.-]+$")
    port: int = Field(default=8006, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: Optional[str] = None
    token_id: Optional[str] = None
    token_secret: Optional[str] = None
    realm: str = "pam"
    verify_ssl: bool = True
    ca_bundle: Optional[str] = None
    timeout_ms: int = Field(default=30000, ge=1000, le=60000)

    @model_validator(mode="after")
    def require_credentials(self):
        if not self.password and not (self.token_id and self.token_secret):
            raise ValueError("Either password or both token_id and token_secret must be provided")
        return self

    @property
    def base_url(self) -> str:
        return f"https://{self.host}:{self.port}/api2/json"

    def credentials(self) -> Credentials:
        """Build the credential variant for this configuration; a password wins over a token."""
        if self.password:
            return PasswordCredential(username=self.username, realm=self.realm, password=self.password)
        return TokenCredential(
            username=self.username,
            realm=self.realm,
            token_id=self.token_id or "",
            token_secret=self.token_secret or "",
        )


class RateLimitConfig(BaseModel):
    enabled: bool = True
    max_requests: int = Field(default=100, ge=1)
    window_ms: int = Field(default=60000, ge=1)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    backoff_ms: int = Field(default=1000, ge=0)


class AuditConfig(BaseModel):
    max_entries: int = Field(default=10000, ge=1)
    log_path: Optional[str] = None
    console: bool = True


class SafetyConfig(BaseModel):
    allowed_operations: Set[str] = Field(default_factory=set)
    denied_operations: Set[str] = Field(default_factory=set)
    require_confirmation: bool = True

    @field_validator("allowed_operations", "denied_operations", mode="before")
    @classmethod
    def coerce_sets(cls, v):
        if isinstance(v, str):
            return {p.strip() for p in v.split(",") if p.strip()}
        return set(v or ())


class ServerConfig(BaseModel):
    name: str = "proxmox-mcp-pro"
    transport: str = "stdio"  # "stdio" | "sse" | "streamable-http"
    host: str = "127.0.0.1"
    port: int = 8000


class AppConfig(BaseModel):
    proxmox: ProxmoxConfig
    ratelimit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name, "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}") from None


def load_config() -> AppConfig:
    """Build the application config from the environment.

    Raises ``ConfigurationError`` when required values are missing or invalid.
    """
    host = os.getenv("PROXMOX_HOST", "").strip()
    username = os.getenv("PROXMOX_USERNAME", "").strip()
    if not host or not username:
        raise ConfigurationError("PROXMOX_HOST and PROXMOX_USERNAME environment variables are required")

    try:
        return AppConfig(
            proxmox=ProxmoxConfig(
                host=host,
                port=_env_int("PROXMOX_PORT", 8006),
                username=username,
                password=os.getenv("PROXMOX_PASSWORD") or None,
                token_id=os.getenv("PROXMOX_TOKEN_ID") or None,
                token_secret=os.getenv("PROXMOX_TOKEN_SECRET") or None,
                realm=os.getenv("PROXMOX_REALM", "").strip() or "pam",
                verify_ssl=os.getenv("PROXMOX_VERIFY_SSL", "true").lower() != "false",
                ca_bundle=os.getenv("PROXMOX_CA_BUNDLE") or None,
                timeout_ms=_env_int("PROXMOX_TIMEOUT", 30000),
            ),
            ratelimit=RateLimitConfig(
                enabled=_env_bool("RATE_LIMIT", True),
                max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 100),
                window_ms=_env_int("RATE_LIMIT_WINDOW_MS", 60000),
            ),
            retry=RetryConfig(
                max_retries=_env_int("AUTH_MAX_RETRIES", 3),
                backoff_ms=_env_int("AUTH_RETRY_BACKOFF_MS", 1000),
            ),
            audit=AuditConfig(
                max_entries=_env_int("AUDIT_MAX_ENTRIES", 10000),
                log_path=os.getenv("AUDIT_LOG_PATH") or None,
                console=_env_bool("AUDIT_CONSOLE", True),
            ),
            safety=SafetyConfig(
                allowed_operations=os.getenv("ALLOWED_OPERATIONS", ""),
                denied_operations=os.getenv("DENIED_OPERATIONS", ""),
                require_confirmation=_env_bool("REQUIRE_CONFIRMATION", True),
            ),
            server=ServerConfig(
                name=os.getenv("SERVER_NAME", "proxmox-mcp-pro"),
                transport=os.getenv("MCP_TRANSPORT", "stdio"),
                host=os.getenv("SERVER_HOST", "127.0.0.1"),
                port=_env_int("SERVER_PORT", 8000),
            ),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
