"""DurableStore protocol - persistent tables with a change feed."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Union

from attendmint.models.events import ChangeEvent
from attendmint.models.records import ActivityRecord

Row = dict[str, Any]
ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class DurableStore(Protocol):
    """Persists events, profiles, tickets and attendance records.

    Entities are addressed by table name. Rows are plain dicts keyed by
    column name; JSON and boolean columns are decoded on read.
    """

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        """Close the database connection."""
        ...

    # ── Rows ───────────────────────────────────────────────

    async def get(self, entity: str, record_id: str) -> Row | None:
        ...

    async def query(
        self,
        entity: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Rows whose columns equal every value in ``filters``.

        A list value matches any of its members; ``None`` matches NULL.
        """
        ...

    async def insert(self, entity: str, fields: dict[str, Any]) -> Row:
        ...

    async def update(self, entity: str, record_id: str, fields: dict[str, Any]) -> Row | None:
        ...

    async def update_where(
        self,
        entity: str,
        record_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any],
    ) -> Row | None:
        """Compare-and-set: apply ``fields`` only if the row still matches ``expected``.

        Returns the updated row, or None if the row is missing or changed.
        """
        ...

    async def increment(
        self,
        entity: str,
        record_id: str,
        column: str,
        delta: int = 1,
        ceiling_column: str | None = None,
    ) -> Row | None:
        """Atomically add ``delta`` to ``column``.

        The result may not drop below zero nor, when ``ceiling_column`` is
        given, exceed that column's value. Returns None if the bound would
        be violated or the row is missing.
        """
        ...

    async def upsert_increment(
        self,
        entity: str,
        record_id: str,
        deltas: dict[str, int],
    ) -> Row:
        """Add each delta to its column, creating the row first if it is missing.

        Insert and increment happen in one statement, so concurrent first
        writers for the same id both land.
        """
        ...

    async def delete(self, entity: str, record_id: str) -> bool:
        ...

    # ── Change feed ────────────────────────────────────────

    def subscribe(self, entity: str, callback: ChangeCallback) -> Callable[[], None]:
        """Register for changes to ``entity`` ("*" for all). Returns an unsubscribe."""
        ...

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        event_id: str | None = None,
        ticket_id: str | None = None,
        attendance_id: str | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...
