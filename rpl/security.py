"""Admin authentication: session cookie first, static Basic credential second."""
from __future__ import annotations

import base64
import secrets
from typing import Optional, Tuple

from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param

from .errors import Unauthenticated
from .sessions import SessionManager

SESSION_COOKIE_NAME = "admin_token"


def _matches(provided: str, expected: str) -> bool:
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def basic_credentials(request: Request) -> Optional[Tuple[str, str]]:
    """Return ``(username, password)`` from an ``Authorization: Basic`` header.

    The payload is decoded as UTF-8 so non-ASCII credentials compare byte for
    byte with the configured ones. Anything malformed counts as no credentials.
    """

    scheme, param = get_authorization_scheme_param(request.headers.get("Authorization"))
    if not param or scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except ValueError:
        return None
    username, separator, password = decoded.partition(":")
    if not separator:
        return None
    return username, password


class AdminAuth:
    """FastAPI dependency gating the admin endpoints.

    A valid ``admin_token`` cookie wins. Otherwise an ``Authorization: Basic``
    header carrying the configured username and password is accepted, so
    scripts can call the admin API without logging in first.
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        username: str,
        password: str,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        if not username or not password:
            raise ValueError("Admin username and password must be configured")
        self._sessions = sessions
        self._username = username
        self._password = password
        self._cookie_name = cookie_name

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def check_credentials(self, username: str, password: str) -> bool:
        # Evaluate both comparisons so timing does not reveal which one failed.
        user_ok = _matches(username, self._username)
        pass_ok = _matches(password, self._password)
        return user_ok and pass_ok

    def session_user(self, request: Request) -> str | None:
        session = self._sessions.resolve(request.cookies.get(self._cookie_name))
        return session.username if session is not None else None

    async def __call__(self, request: Request) -> str:
        username = self.session_user(request)
        if username is not None:
            return username

        credentials = basic_credentials(request)
        if credentials is not None and self.check_credentials(*credentials):
            return credentials[0]

        raise Unauthenticated()


__all__ = ["AdminAuth", "SESSION_COOKIE_NAME", "basic_credentials"]
