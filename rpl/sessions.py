"""In-memory session handling for the admin panel."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class Session:
    token: str
    username: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Generate, validate, and revoke admin sessions.

    Sessions live for the lifetime of the process. Expired entries are evicted
    lazily, the next time their token is looked up.
    """

    def __init__(self, *, ttl: timedelta = timedelta(hours=2), clock: Clock | None = None) -> None:
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, username: str) -> Session:
        session = Session(
            token=secrets.token_hex(24),
            username=username,
            expires_at=self._clock() + self._ttl,
        )
        with self._lock:
            self._sessions[session.token] = session
        return session

    def resolve(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at < now:
                self._sessions.pop(token, None)
                return None
            return session

    def is_valid(self, token: Optional[str]) -> bool:
        return self.resolve(token) is not None

    def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["Session", "SessionManager"]
