from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Topic:
    label: str
    value: str
    description: str
    emoji: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "value": self.value,
            "description": self.description,
            "emoji": self.emoji,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Topic:
        return cls(
            label=str(data["label"]),
            value=str(data["value"]),
            description=str(data.get("description") or ""),
            emoji=data.get("emoji") or None,
        )


@dataclass(slots=True)
class GuildConfiguration:
    guild_id: int
    category_id: int | None = None
    support_role_id: int | None = None
    logs_channel_id: int | None = None
    topics: list[Topic] = field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        return self.category_id is not None and self.support_role_id is not None


@dataclass(slots=True)
class TicketRecord:
    id: str
    ticket_number: int
    guild_id: int
    channel_id: int
    creator_id: int
    topic_value: str
    topic_label: str
    claimed_by_id: int | None = None
    is_locked: bool = False
    is_closing: bool = False
    status: str = "open"
    created_at: str | None = None
    closed_at: str | None = None
    closed_by_id: int | None = None

    @property
    def channel_name(self) -> str:
        return f"ticket-{self.ticket_number}"

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None
