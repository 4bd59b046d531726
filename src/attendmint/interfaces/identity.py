"""IdentityProvider protocol - who is acting."""

from __future__ import annotations

from typing import Protocol


class IdentityProvider(Protocol):
    def current_user_id(self) -> str | None:
        ...


class StaticIdentity:
    """IdentityProvider with a fixed user, used by the CLI and tests."""

    def __init__(self, user_id: str | None = None) -> None:
        self.user_id = user_id

    def current_user_id(self) -> str | None:
        return self.user_id
