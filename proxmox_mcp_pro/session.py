"""Credentials and the Proxmox session lifecycle.

Two credential kinds are supported. API tokens are static: the client sends the
same ``Authorization`` header with every request and never needs to refresh.
Passwords are exchanged at ``/access/ticket`` for a ticket plus a CSRF token;
the ticket expires server-side without notice, so the session is only ever
found to be stale when a request comes back 401. There is no local expiry clock.

A ``SessionManager`` moves between three states::

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
    AUTHENTICATED   -> UNAUTHENTICATED   (invalidate after a 401)

``ensure_authenticated`` holds a lock across the check and the exchange, so
threads that all find the session empty share a single ticket request.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Union

from .errors import AuthenticationFailed, ConfigurationError, InvalidAuthResponse, TransportError

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)

TICKET_PATH = "/access/ticket"


def _require(**fields: Optional[str]) -> None:
    for name, value in fields.items():
        if not value or not str(value).strip():
            raise ConfigurationError(f"Credential field '{name}' must not be empty")


@dataclass(frozen=True)
class PasswordCredential:
    username: str
    realm: str
    password: str

    def __post_init__(self):
        _require(username=self.username, realm=self.realm, password=self.password)

    @property
    def user_id(self) -> str:
        return f"{self.username}@{self.realm}"

    def __repr__(self) -> str:
        return f"PasswordCredential(user_id={self.user_id!r})"


@dataclass(frozen=True)
class TokenCredential:
    username: str
    realm: str
    token_id: str
    token_secret: str

    def __post_init__(self):
        _require(username=self.username, realm=self.realm, token_id=self.token_id, token_secret=self.token_secret)

    @property
    def user_id(self) -> str:
        return f"{self.username}@{self.realm}"

    @property
    def header(self) -> str:
        return f"PVEAPIToken={self.user_id}!{self.token_id}={self.token_secret}"

    def __repr__(self) -> str:
        return f"TokenCredential(user_id={self.user_id!r}, token_id={self.token_id!r})"


Credentials = Union[PasswordCredential, TokenCredential]


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class SessionManager:
    """Owns the ticket/CSRF pair or the static token header for one Proxmox host."""

    def __init__(self, credentials: Credentials, transport: "Transport"):
        if not isinstance(credentials, (PasswordCredential, TokenCredential)):
            raise ConfigurationError(f"Unsupported credential type: {type(credentials).__name__}")
        self._credentials = credentials
        self._transport = transport
        self._lock = threading.RLock()
        self._ticket: Optional[str] = None
        self._csrf_token: Optional[str] = None
        self._authorization: Optional[str] = None
        self._authenticating = False
        # Bumped on every successful exchange so a stale 401 cannot clear a newer ticket.
        self._generation = 0

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def user(self) -> str:
        return self._credentials.user_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_authenticated(self) -> bool:
        return self._authorization is not None or (self._ticket is not None and self._csrf_token is not None)

    @property
    def state(self) -> SessionState:
        if self._authenticating:
            return SessionState.AUTHENTICATING
        if self.is_authenticated:
            return SessionState.AUTHENTICATED
        return SessionState.UNAUTHENTICATED

    def authenticate(self) -> None:
        """Run the credential exchange unconditionally.

        Raises ``AuthenticationFailed`` (or its subclass ``InvalidAuthResponse``).
        """
        with self._lock:
            self._authenticating = True
            try:
                if isinstance(self._credentials, TokenCredential):
                    self._authorization = self._credentials.header
                    logger.debug("Using API token for %s", self.user)
                else:
                    self._ticket, self._csrf_token = self._exchange_ticket(self._credentials)
                    logger.info("Obtained ticket for %s", self.user)
                self._generation += 1
            finally:
                self._authenticating = False

    def ensure_authenticated(self) -> None:
        with self._lock:
            if self.is_authenticated:
                return
            self.authenticate()

    def invalidate(self, generation: Optional[int] = None) -> None:
        """Drop the ticket and CSRF token.

        When ``generation`` is given and no longer current, the session was already
        refreshed by someone else and is left alone. Token headers are never cleared.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            if self._ticket is not None:
                logger.debug("Invalidating ticket for %s", self.user)
            self._ticket = None
            self._csrf_token = None

    def decorate(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        out = dict(headers or {})
        with self._lock:
            if self._authorization:
                out["Authorization"] = self._authorization
            elif self._ticket and self._csrf_token:
                out["Cookie"] = f"PVEAuthCookie={self._ticket}"
                out["CSRFPreventionToken"] = self._csrf_token
        return out

    def _exchange_ticket(self, cred: PasswordCredential):
        form = {"username": cred.user_id, "password": cred.password}
        try:
            r = self._transport.send("POST", TICKET_PATH, form, form=True)
        except TransportError as e:
            raise AuthenticationFailed(str(e), cause=e) from e

        if r.status == 401:
            raise AuthenticationFailed("invalid credentials (HTTP 401)")
        if not 200 <= r.status < 300:
            raise AuthenticationFailed(f"ticket request returned HTTP {r.status}")

        data = r.body.get("data") if isinstance(r.body, dict) else None
        if not isinstance(data, dict):
            raise InvalidAuthResponse()
        ticket = data.get("ticket")
        csrf = data.get("CSRFPreventionToken")
        if not isinstance(ticket, str) or not ticket or not isinstance(csrf, str) or not csrf:
            raise InvalidAuthResponse()
        return ticket, csrf
