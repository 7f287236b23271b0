from __future__ import annotations

import json
from typing import Any

from database.base import Database
from database.models import GuildConfiguration, Topic, TicketRecord
from utils.time import utc_now_iso


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class GuildConfigRepository:
    """Per-guild ticket configuration, created on first read."""

    # Column written for each patchable field and how to serialize it.
    PATCHABLE_FIELDS = {
        "category_id": "category_id",
        "support_role_id": "support_role_id",
        "logs_channel_id": "logs_channel_id",
        "topics": "topics_json",
    }

    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure(self, guild_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO guild_config(guild_id)
            VALUES (?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id],
        )

    async def get(self, guild_id: int) -> GuildConfiguration:
        await self.ensure(guild_id)
        row = await self.db.fetchone("SELECT * FROM guild_config WHERE guild_id = ?;", [guild_id])
        if row is None:
            raise RuntimeError(f"guild_config row missing for guild {guild_id}")
        return self._row_to_config(row)

    async def replace(self, guild_id: int, config: GuildConfiguration) -> GuildConfiguration:
        await self.ensure(guild_id)
        await self.db.execute(
            """
            UPDATE guild_config
            SET category_id = ?, support_role_id = ?, logs_channel_id = ?, topics_json = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [
                config.category_id,
                config.support_role_id,
                config.logs_channel_id,
                _json_dump([topic.to_dict() for topic in config.topics]),
                guild_id,
            ],
        )
        return await self.get(guild_id)

    async def patch(self, guild_id: int, **fields: Any) -> GuildConfiguration:
        """Update only the named fields; other columns keep their stored values."""
        unknown = set(fields) - set(self.PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")
        await self.ensure(guild_id)
        if not fields:
            return await self.get(guild_id)

        assignments: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            assignments.append(f"{self.PATCHABLE_FIELDS[name]} = ?")
            if name == "topics":
                params.append(_json_dump([topic.to_dict() for topic in value]))
            else:
                params.append(_optional_int(value))
        params.append(guild_id)
        await self.db.execute(
            f"""
            UPDATE guild_config
            SET {", ".join(assignments)}, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            params,
        )
        return await self.get(guild_id)

    async def reset(self, guild_id: int) -> GuildConfiguration:
        return await self.replace(guild_id, GuildConfiguration(guild_id=guild_id))

    def _row_to_config(self, row: dict[str, Any]) -> GuildConfiguration:
        return GuildConfiguration(
            guild_id=int(row["guild_id"]),
            category_id=_optional_int(row["category_id"]),
            support_role_id=_optional_int(row["support_role_id"]),
            logs_channel_id=_optional_int(row["logs_channel_id"]),
            topics=[Topic.from_dict(item) for item in _json_load(row["topics_json"], [])],
        )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, ticket: TicketRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO tickets (
                id, ticket_number, guild_id, channel_id, creator_id, topic_value, topic_label,
                claimed_by_id, is_locked, is_closing, status, created_at, closed_at, closed_by_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                ticket.id,
                ticket.ticket_number,
                ticket.guild_id,
                ticket.channel_id,
                ticket.creator_id,
                ticket.topic_value,
                ticket.topic_label,
                ticket.claimed_by_id,
                ticket.is_locked,
                ticket.is_closing,
                ticket.status,
                ticket.created_at or utc_now_iso(),
                ticket.closed_at,
                ticket.closed_by_id,
            ],
        )

    async def get_by_channel(self, guild_id: int, channel_id: int) -> TicketRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE guild_id = ? AND channel_id = ?;",
            [guild_id, channel_id],
        )
        if not row:
            return None
        return self._row_to_ticket(row)

    async def list_open_by_creator(self, guild_id: int, creator_id: int) -> list[TicketRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE guild_id = ? AND creator_id = ? AND closed_at IS NULL
            ORDER BY created_at DESC;
            """,
            [guild_id, creator_id],
        )
        return [self._row_to_ticket(row) for row in rows]

    async def update_state(self, ticket: TicketRecord) -> None:
        await self.db.execute(
            """
            UPDATE tickets
            SET claimed_by_id = ?, is_locked = ?, is_closing = ?, status = ?
            WHERE id = ?;
            """,
            [ticket.claimed_by_id, ticket.is_locked, ticket.is_closing, ticket.status, ticket.id],
        )

    async def mark_closed(self, ticket_id: str, closed_by_id: int | None) -> None:
        await self.db.execute(
            """
            UPDATE tickets
            SET status = 'closed', is_closing = ?, closed_by_id = ?, closed_at = ?
            WHERE id = ? AND closed_at IS NULL;
            """,
            [False, closed_by_id, utc_now_iso(), ticket_id],
        )

    async def mark_channel_closed(self, channel_id: int) -> bool:
        """Close whatever open record points at a channel that no longer exists."""
        affected = await self.db.execute(
            """
            UPDATE tickets
            SET status = 'closed', is_closing = ?, closed_at = ?
            WHERE channel_id = ? AND closed_at IS NULL;
            """,
            [False, utc_now_iso(), channel_id],
        )
        return affected > 0

    def _row_to_ticket(self, row: dict[str, Any]) -> TicketRecord:
        return TicketRecord(
            id=row["id"],
            ticket_number=int(row["ticket_number"]),
            guild_id=int(row["guild_id"]),
            channel_id=int(row["channel_id"]),
            creator_id=int(row["creator_id"]),
            topic_value=row["topic_value"],
            topic_label=row["topic_label"],
            claimed_by_id=_optional_int(row["claimed_by_id"]),
            is_locked=bool(row["is_locked"]),
            is_closing=bool(row["is_closing"]),
            status=row["status"],
            created_at=row["created_at"],
            closed_at=row["closed_at"],
            closed_by_id=_optional_int(row["closed_by_id"]),
        )
