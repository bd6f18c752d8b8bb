"""
Event Schema.

Defines the unified Event dataclass for table notifications.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Event:
    """
    Unified event schema for all table notifications.

    ``table_id`` and ``revision`` let other tabs/devices decide whether their
    copy of the order is stale. ``origin`` identifies the writer so a client
    can ignore its own echoes. ``entity`` carries event-specific data.
    """

    type: str
    table_id: int | None = None
    revision: int | None = None
    origin: str | None = None
    entity: dict[str, Any] = field(default_factory=dict)
    ts: str | None = None
    v: int = 1  # Schema version

    def __post_init__(self) -> None:
        """Validate event fields so malformed events never reach Redis."""
        if not self.type or not isinstance(self.type, str):
            raise ValueError("Event type must be a non-empty string")

        if self.table_id is not None and (not isinstance(self.table_id, int) or self.table_id <= 0):
            raise ValueError("Event table_id must be a positive integer or None")

        if self.revision is not None and (not isinstance(self.revision, int) or self.revision < 0):
            raise ValueError("Event revision must be a non-negative integer or None")

        if self.entity is not None and not isinstance(self.entity, dict):
            raise ValueError("Event entity must be a dict or None")

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        data = asdict(self)
        data["entity"] = data["entity"] or {}
        data["ts"] = data["ts"] or datetime.now(timezone.utc).isoformat()
        return json.dumps(data, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, json_str: str | bytes) -> "Event":
        """Deserialize event from JSON; validation runs in __post_init__."""
        data = json.loads(json_str)
        return cls(**data)
