from __future__ import annotations

import os
from typing import Protocol

TOKEN_ENV_VARS = ("GHINBOX_TOKEN", "GITHUB_TOKEN")


class CredentialProvider(Protocol):
    def get_token(self) -> str | None: ...


class EnvCredentialProvider:
    """Reads the bearer token from the environment on every call."""

    def __init__(self, env_vars: tuple[str, ...] = TOKEN_ENV_VARS) -> None:
        self.env_vars = env_vars

    def get_token(self) -> str | None:
        for name in self.env_vars:
            value = (os.getenv(name) or "").strip()
            if value:
                return value
        return None


class StaticCredentialProvider:
    def __init__(self, token: str | None) -> None:
        self.token = token

    def get_token(self) -> str | None:
        token = (self.token or "").strip()
        return token or None
