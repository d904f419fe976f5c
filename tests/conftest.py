"""Shared fixtures for tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from proxmox_mcp_pro.audit import AuditLog
from proxmox_mcp_pro.authz import RateLimiter
from proxmox_mcp_pro.config import AppConfig, AuditConfig, ProxmoxConfig
from proxmox_mcp_pro.dispatcher import RequestDispatcher
from proxmox_mcp_pro.session import PasswordCredential, SessionManager, TokenCredential
from proxmox_mcp_pro.transport import TransportResponse

TICKET_OK = TransportResponse(200, {"data": {"ticket": "PVE:root@pam:ABC", "CSRFPreventionToken": "csrf-1"}})


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms


class FakeTransport:
    """Replays scripted responses and records every call.

    ``ticket_responses`` answer ``/access/ticket``; ``responses`` answer everything
    else. An ``Exception`` in either list is raised instead of returned. When a list
    runs dry its last element is repeated.
    """

    def __init__(self, responses=None, ticket_responses=None):
        self.responses: List[Any] = list(responses or [TransportResponse(200, {"data": None})])
        self.ticket_responses: List[Any] = list(ticket_responses or [TICKET_OK])
        self.calls: List[Dict[str, Any]] = []

    @property
    def ticket_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["path"] == "/access/ticket"]

    @property
    def api_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["path"] != "/access/ticket"]

    def send(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None, *, form: bool = False) -> TransportResponse:
        self.calls.append({"method": method, "path": path, "body": body, "headers": dict(headers or {}), "form": form})
        queue = self.ticket_responses if path == "/access/ticket" else self.responses
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def password_cred() -> PasswordCredential:
    return PasswordCredential(username="root", realm="pam", password="s3cret")


@pytest.fixture
def token_cred() -> TokenCredential:
    return TokenCredential(username="automation", realm="pve", token_id="mcp", token_secret="uuid-secret")


@pytest.fixture
def make_dispatcher(clock, sleeps, password_cred):
    def _make(transport: FakeTransport, credentials=None, max_requests: int = 100, window_ms: int = 60000,
              max_retries: int = 3, backoff_ms: int = 1000):
        session = SessionManager(credentials or password_cred, transport)
        limiter = RateLimiter(max_requests, window_ms, clock=clock)
        audit = AuditLog()
        dispatcher = RequestDispatcher(transport, session, limiter, audit, max_retries=max_retries,
                                       backoff_ms=backoff_ms, sleep=sleeps.append)
        return dispatcher, session, limiter, audit
    return _make


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        proxmox=ProxmoxConfig(host="pve.example.com", username="root", password="s3cret"),
        audit=AuditConfig(console=False),
    )
