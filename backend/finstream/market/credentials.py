"""Bearer-token providers for the transport handshake."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

ACCESS_TOKEN_ENV = "FINSTREAM_ACCESS_TOKEN"


class CredentialProvider(ABC):
    """What the ConnectionManager needs from the identity provider.

    The OAuth2 flow itself (login, refresh) lives elsewhere; the manager only
    asks for the current token and never caches it.
    """

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True when a usable session exists."""

    @abstractmethod
    def get_access_token(self) -> str | None:
        """Current bearer token, or None when logged out."""


class StaticCredentialProvider(CredentialProvider):
    """Fixed token, replaceable at runtime (e.g. after an external refresh)."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def set_token(self, token: str | None) -> None:
        self._token = token

    def is_authenticated(self) -> bool:
        return bool(self._token)

    def get_access_token(self) -> str | None:
        return self._token or None


class EnvCredentialProvider(CredentialProvider):
    """Reads the token from FINSTREAM_ACCESS_TOKEN on every call."""

    def __init__(self, variable: str = ACCESS_TOKEN_ENV) -> None:
        self._variable = variable

    def is_authenticated(self) -> bool:
        return self.get_access_token() is not None

    def get_access_token(self) -> str | None:
        return os.environ.get(self._variable, "").strip() or None
