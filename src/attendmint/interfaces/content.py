"""ContentStorage protocol - content-addressed upload of metadata documents."""

from __future__ import annotations

from typing import Protocol


class ContentStorage(Protocol):
    """Stores bytes off-chain and returns a resolvable URI."""

    async def upload(self, data: bytes, filename: str = "metadata.json") -> str:
        """Upload ``data`` and return its URI. Raises UploadFailedError."""
        ...
