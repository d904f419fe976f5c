from __future__ import annotations

import enum
import json
import logging
import re
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10000

_UNSAFE = re.compile(r"[^A-Za-z0-9_ .-]")


def sanitize(text: str) -> str:
    """Strip everything but letters, digits, underscore, space, '.' and '-'."""
    return _UNSAFE.sub("", text)


class AuditResult(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AuditEntry:
    operation: str
    user: str
    resource: str
    result: AuditResult
    details: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return self.result is AuditResult.SUCCESS

    def to_dict(self) -> dict:
        data = asdict(self)
        data["result"] = self.result.value
        return data


AuditSink = Callable[[AuditEntry], None]


class AuditLog:
    """Bounded, append-only record of access attempts; oldest entries are evicted first."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries)
        self._sinks: List[AuditSink] = []
        self._lock = threading.Lock()

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        for sink in self._sinks:
            try:
                sink(entry)
            except Exception as e:
                logger.warning("Audit sink %r failed: %s", sink, e)

    def record(
        self,
        operation: str,
        user: str,
        resource: str,
        result: AuditResult,
        details: Optional[str] = None,
    ) -> AuditEntry:
        entry = AuditEntry(operation=operation, user=user, resource=resource, result=result, details=details)
        self.append(entry)
        return entry

    def read(self, limit: Optional[int] = None) -> List[AuditEntry]:
        """Return a copy of the entries, oldest first; only the last ``limit`` when given."""
        with self._lock:
            entries = list(self._entries)
        if limit is None:
            return entries
        if limit <= 0:
            return []
        return entries[-limit:]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class LoggingAuditSink:
    """Writes one sanitized ``[AUDIT]`` line per entry to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger("proxmox_mcp_pro.audit.trail")

    def __call__(self, entry: AuditEntry) -> None:
        line = f"[AUDIT] {sanitize(entry.operation)} {sanitize(entry.resource)} by {sanitize(entry.user)}: {entry.result.value}"
        if entry.details:
            line += f" - {sanitize(entry.details)}"
        level = logging.INFO if entry.ok else logging.WARNING
        self._log.log(level, line)


class JsonlAuditSink:
    """Appends each entry as a JSON object, one per line, to ``path``."""

    def __init__(self, path: str):
        self._path = path
        self._sink = open(path, "a", buffering=1, encoding="utf-8")
        self._lock = threading.Lock()

    def __call__(self, entry: AuditEntry) -> None:
        data = json.dumps(entry.to_dict())
        with self._lock:
            self._sink.write(data + "\n")

    def close(self) -> None:
        with self._lock:
            self._sink.close()
