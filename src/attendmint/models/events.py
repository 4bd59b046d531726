"""Change notifications published by the durable store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ChangeEvent:
    """A row of ``entity`` was inserted, updated or deleted.

    ``row`` is the row after the change (before it, for deletes).
    """

    entity: str  # events | profiles | tickets | attendance
    action: str  # insert | update | delete
    record_id: str
    row: dict[str, Any] = field(default_factory=dict)
