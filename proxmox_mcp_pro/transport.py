from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.ssl_ import create_urllib3_context

from .config import ProxmoxConfig
from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    def send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        *,
        form: bool = False,
    ) -> TransportResponse:
        ...


class TLSAdapter(HTTPAdapter):
    """HTTPAdapter that refuses anything older than TLS 1.2."""

    def __init__(self, verify: bool = True, **kwargs):
        self._ssl_context = create_urllib3_context(
            ssl_minimum_version=ssl.TLSVersion.TLSv1_2,
            cert_reqs=ssl.CERT_REQUIRED if verify else ssl.CERT_NONE,
        )
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_context"] = self._ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):
        kwargs["ssl_context"] = self._ssl_context
        return super().proxy_manager_for(*args, **kwargs)


class RequestsTransport:
    """Sends requests to ``https://<host>:<port>/api2/json`` over a pooled session."""

    def __init__(self, cfg: ProxmoxConfig, session: Optional[requests.Session] = None):
        self._cfg = cfg
        self._base = cfg.base_url
        self._timeout = cfg.timeout_ms / 1000.0
        self._session = session or requests.Session()
        self._session.mount("https://", TLSAdapter(verify=cfg.verify_ssl))
        self._session.verify = cfg.ca_bundle or cfg.verify_ssl
        if not cfg.verify_ssl:
            logger.warning("TLS certificate verification is disabled for %s", cfg.host)

    @property
    def base_url(self) -> str:
        return self._base

    def send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        *,
        form: bool = False,
    ) -> TransportResponse:
        method = method.upper()
        url = f"{self._base}{path}"
        kwargs: Dict[str, Any] = {"headers": dict(headers or {}), "timeout": self._timeout}
        if body is not None:
            if method in ("GET", "DELETE"):
                kwargs["params"] = body
            elif form:
                kwargs["data"] = body
            else:
                kwargs["json"] = body

        try:
            r = self._session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}", cause=e) from e

        logger.debug("%s %s -> %d", method, path, r.status_code)
        return TransportResponse(status=r.status_code, body=self._safe_json(r))

    @staticmethod
    def _safe_json(r: requests.Response) -> Any:
        """Parse a JSON response body, returning None when there is none."""
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            return None

    def close(self) -> None:
        self._session.close()
