"""End-to-end contract for one logical Proxmox API call.

Each attempt acquires a rate-limit permit, makes sure a session exists, sends the
decorated request and records exactly one audit entry. A 401 clears the session,
waits ``backoff_ms * attempt`` and tries again, up to ``max_retries`` times.
Everything else is surfaced to the caller unchanged.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .audit import AuditLog, AuditResult
from .authz import RateLimiter
from .errors import AuthenticationFailed, HTTPError, RateLimitExceeded, RetryExhausted, TransportError
from .session import SessionManager
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_MS = 1000


class RetryState:
    """Attempt counter for one dispatch; linear backoff indexed by attempt number."""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES, backoff_ms: int = DEFAULT_BACKOFF_MS):
        self.max_retries = max_retries
        self.backoff_ms = backoff_ms
        self.attempts = 0

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_retries

    def next_delay_ms(self) -> int:
        """Count one more retry and return how long to wait before it."""
        self.attempts += 1
        return self.backoff_ms * self.attempts

    def reset(self) -> None:
        self.attempts = 0

    def __repr__(self) -> str:
        return f"RetryState(attempts={self.attempts}, max_retries={self.max_retries})"


class RequestDispatcher:
    def __init__(
        self,
        transport: Transport,
        session: SessionManager,
        limiter: RateLimiter,
        audit: AuditLog,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._transport = transport
        self._session = session
        self._limiter = limiter
        self._audit = audit
        self.max_retries = max_retries
        self.backoff_ms = backoff_ms
        self._sleep = sleep
        self._local = threading.local()

    @property
    def retry_count(self) -> int:
        """Retries used by this thread's most recent dispatch; 0 after a success."""
        retry = getattr(self._local, "retry", None)
        return retry.attempts if retry else 0

    def dispatch(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        method = method.upper()
        retry = RetryState(self.max_retries, self.backoff_ms)
        self._local.retry = retry

        while True:
            if not self._limiter.try_acquire():
                err = RateLimitExceeded()
                self._record(method, path, AuditResult.FAILURE, str(err))
                raise err

            try:
                self._session.ensure_authenticated()
            except AuthenticationFailed as e:
                self._record(method, path, AuditResult.FAILURE, str(e))
                raise

            generation = self._session.generation
            headers = self._session.decorate()
            try:
                r = self._transport.send(method, path, body, headers)
            except TransportError as e:
                self._record(method, path, AuditResult.FAILURE, str(e))
                raise

            if r.ok:
                retry.reset()
                self._record(method, path, AuditResult.SUCCESS)
                return self._payload(r)

            if r.status != 401:
                err = HTTPError(f"{method} request failed", status_code=r.status, response_body=r.body, path=path)
                self._record(method, path, AuditResult.FAILURE, str(err))
                raise err

            self._record(method, path, AuditResult.FAILURE, f"HTTP 401 on {path}: authentication rejected")
            if not retry.can_retry:
                logger.warning("%s %s still rejected after %d retries", method, path, retry.attempts)
                raise RetryExhausted(retry.max_retries, path=path)

            delay_ms = retry.next_delay_ms()
            logger.info(
                "Session rejected on %s %s, re-authenticating (retry %d/%d in %d ms)",
                method, path, retry.attempts, retry.max_retries, delay_ms,
            )
            self._session.invalidate(generation)
            self._sleep(delay_ms / 1000.0)
            try:
                self._session.ensure_authenticated()
            except AuthenticationFailed as e:
                self._record(method, path, AuditResult.FAILURE, str(e))
                raise

    def _record(self, method: str, path: str, result: AuditResult, details: Optional[str] = None) -> None:
        self._audit.record(operation=method, user=self._session.user, resource=path, result=result, details=details)

    @staticmethod
    def _payload(r: TransportResponse) -> Any:
        """Unwrap the ``{"data": ...}`` envelope Proxmox puts around every response."""
        if isinstance(r.body, dict) and "data" in r.body:
            return r.body["data"]
        return r.body
