"""Session ids, session storage and flash messages.

The session id lives in a plain cookie; what is stored against it is up to a
`SessionStore`. Stores are shared by all request threads and must be safe for
concurrent use.
"""
import secrets
import threading
import typing as t
from dataclasses import dataclass

SESSION_KEY = "ZQSESSID"
SESSION_ID_LEN = 36

FLASH_ALERT_KEY = "ZQFA"
FLASH_NOTICE_KEY = "ZQFN"
FLASH_AGE = 60


def new_session_id() -> str:
    return secrets.token_hex(SESSION_ID_LEN // 2)


@t.runtime_checkable
class SessionStore(t.Protocol):
    def set(self, sid: str, key: str, value: bytes) -> None: ...
    def get(self, sid: str, key: str) -> bytes | None: ...
    def clear(self, sid: str, key: str) -> None: ...


class MemorySessionStore:
    """Process-local store. Data is lost on restart and not shared between
    worker processes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, bytes]] = {}

    def set(self, sid: str, key: str, value: bytes) -> None:
        with self._lock:
            self._data.setdefault(sid, {})[key] = bytes(value)

    def get(self, sid: str, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(sid, {}).get(key)

    def clear(self, sid: str, key: str) -> None:
        with self._lock:
            if (values := self._data.get(sid)) is not None:
                values.pop(key, None)
                if not values:
                    del self._data[sid]


@dataclass
class Flash:
    alert: str = ""
    notice: str = ""
