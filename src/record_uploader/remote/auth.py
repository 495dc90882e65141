from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

import psycopg
from psycopg import Connection

from record_uploader.errors import ConfigError

if TYPE_CHECKING:
    from record_uploader.config import UploadSettings


@dataclass(frozen=True)
class TokenAuth:
    """An already issued session token for `server_url` (`auth_method: oauth`)."""
    server_url: str
    access_token: str


@dataclass(frozen=True)
class CredentialAuth:
    """Username + password (+ optional security token appended to the password)."""
    server_url: str
    username: str
    password: str
    security_token: str | None = None


Auth = Union[TokenAuth, CredentialAuth]


def auth_from_settings(settings: UploadSettings) -> Auth:
    """Resolve the auth strategy once from settings."""
    if settings.auth_method == "oauth":
        if not settings.access_token:
            raise ConfigError("oauth requires access_token")
        return TokenAuth(server_url=settings.server_url, access_token=settings.access_token)
    if settings.auth_method == "user_password":
        if not settings.username or settings.password is None:
            raise ConfigError("user_password requires username and password")
        return CredentialAuth(
            server_url=settings.server_url,
            username=settings.username,
            password=settings.password,
            security_token=settings.security_token,
        )
    raise ConfigError(f"unknown auth_method: {settings.auth_method!r}")


def connect_kwargs(auth: Auth) -> dict[str, Any]:
    """Keyword arguments for `psycopg.connect` (conninfo first, credentials override it)."""
    if isinstance(auth, TokenAuth):
        return {"conninfo": auth.server_url, "password": auth.access_token}
    return {
        "conninfo": auth.server_url,
        "user": auth.username,
        "password": auth.password + (auth.security_token or ""),
    }


def open_connection(auth: Auth, *, connect: Callable[..., Connection] = psycopg.connect) -> Connection:
    """
    Return a psycopg connection for `auth`.

    Leaves autocommit OFF (commits are managed per batch by the remote connection).
    """
    return connect(**connect_kwargs(auth))
