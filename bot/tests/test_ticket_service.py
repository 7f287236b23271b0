from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import TicketConfig
from core.errors import (
    AlreadyClaimedByOtherError,
    CooldownActiveError,
    DuplicateTicketError,
    ExternalCallError,
    InvalidNameError,
    NotATicketChannelError,
    NotConfiguredError,
    PermissionDeniedError,
    TicketStateError,
    UnknownTopicError,
    ValidationError,
)
from database.base import Database
from database.migrations.runner import run_migrations
from database.models import Topic
from database.repositories import GuildConfigRepository, TicketRepository
from services.cache import MemoryCache
from services.cooldowns import CooldownTracker
from services.ticket_service import (
    TicketService,
    TicketServiceDeps,
    build_channel_topic,
    next_ticket_number,
    parse_channel_topic,
    sanitize_channel_name,
)
from services.transcript_service import TranscriptArtifact

GUILD_ID = 100
BOT_ID = 1
CATEGORY_ID = 200
ROLE_ID = 300
LOGS_ID = 400
CREATOR_ID = 555
STAFF_ID = 777
OTHER_STAFF_ID = 778


class FakeMessage:
    def __init__(self, author_id: int, embeds: list[discord.Embed]) -> None:
        self.author = SimpleNamespace(id=author_id)
        self.embeds = embeds
        self.edit = AsyncMock(side_effect=self._edit)

    async def _edit(self, **kwargs: Any) -> None:
        self.embeds = kwargs.get("embeds", self.embeds)


class FakeGuild:
    """Minimal guild holding channels, roles and members by id."""

    def __init__(self) -> None:
        self.id = GUILD_ID
        self.name = "Test Guild"
        self.me = MagicMock(id=BOT_ID)
        self.default_role = MagicMock()
        self.channels: dict[int, Any] = {}
        self.roles: dict[int, Any] = {}
        self.members: dict[int, Any] = {}
        self._next_channel_id = 9000
        self.create_text_channel = AsyncMock(side_effect=self._create_text_channel)
        self.fetch_member = AsyncMock(side_effect=discord.NotFound(_response(404, "Not Found"), "Unknown Member"))

    def get_channel(self, channel_id: int) -> Any:
        return self.channels.get(channel_id)

    def get_role(self, role_id: int) -> Any:
        return self.roles.get(role_id)

    def get_member(self, user_id: int) -> Any:
        return self.members.get(user_id)

    async def _create_text_channel(self, name: str, *, category: Any, topic: str, **_: Any) -> Any:
        self._next_channel_id += 1
        channel = make_text_channel(self, self._next_channel_id, name, topic=topic, category_id=category.id)
        category.channels.append(channel)
        category.text_channels.append(channel)
        return channel


def _response(status: int, reason: str) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.reason = reason
    return response


async def _iterate(messages: list[FakeMessage]):
    for message in reversed(messages):
        yield message


def make_text_channel(
    guild: FakeGuild, channel_id: int, name: str, topic: str | None = None, *, category_id: int | None = None
) -> MagicMock:
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.name = name
    channel.topic = topic
    channel.category_id = category_id
    channel.guild = guild
    channel.mention = f"<#{channel_id}>"
    channel.messages = []

    async def send(*_: Any, **kwargs: Any) -> FakeMessage:
        embeds = [kwargs["embed"]] if kwargs.get("embed") is not None else []
        message = FakeMessage(BOT_ID, embeds)
        channel.messages.append(message)
        return message

    async def edit(**kwargs: Any) -> None:
        channel.name = kwargs.get("name", channel.name)
        channel.topic = kwargs.get("topic", channel.topic)

    async def delete(**_: Any) -> None:
        guild.channels.pop(channel_id, None)

    channel.send = AsyncMock(side_effect=send)
    channel.edit = AsyncMock(side_effect=edit)
    channel.delete = AsyncMock(side_effect=delete)
    channel.set_permissions = AsyncMock()
    channel.overwrites_for = MagicMock(side_effect=lambda _target: discord.PermissionOverwrite())
    channel.history = MagicMock(side_effect=lambda limit=None: _iterate(channel.messages[-limit:]))
    guild.channels[channel_id] = channel
    return channel


def make_member(guild: FakeGuild, user_id: int, *, staff: bool = False) -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.mention = f"<@{user_id}>"
    member.guild_permissions = discord.Permissions.none()
    member.get_role = MagicMock(side_effect=lambda role_id: guild.roles.get(role_id) if staff else None)
    member.send = AsyncMock()
    guild.members[user_id] = member
    return member


def make_category(guild: FakeGuild, existing: list[Any]) -> MagicMock:
    category = MagicMock(spec=discord.CategoryChannel)
    category.id = CATEGORY_ID
    category.name = "Tickets"
    for channel in existing:
        channel.category_id = CATEGORY_ID
    category.channels = list(existing)
    category.text_channels = list(existing)
    guild.channels[CATEGORY_ID] = category
    return category


class Harness:
    def __init__(self, db: Database, service: TicketService, transcripts: MagicMock) -> None:
        self.db = db
        self.service = service
        self.transcripts = transcripts
        self.guild = FakeGuild()
        role = MagicMock()
        role.id = ROLE_ID
        role.mention = f"<@&{ROLE_ID}>"
        self.guild.roles[ROLE_ID] = role
        self.logs = make_text_channel(self.guild, LOGS_ID, "ticket-logs")
        self.category = make_category(
            self.guild,
            [
                make_text_channel(self.guild, 501, "ticket-3", topic="Ticket ID: ticket-3 | UserID: 1 | Topic: billing"),
                make_text_channel(self.guild, 502, "ticket-6"),
                make_text_channel(self.guild, 503, "general"),
            ],
        )
        self.creator = make_member(self.guild, CREATOR_ID)
        self.staff = make_member(self.guild, STAFF_ID, staff=True)
        self.other_staff = make_member(self.guild, OTHER_STAFF_ID, staff=True)

    async def configure(self) -> None:
        await self.service.deps.guild_config_repo.patch(
            GUILD_ID,
            category_id=CATEGORY_ID,
            support_role_id=ROLE_ID,
            logs_channel_id=LOGS_ID,
            topics=[
                Topic(label="Billing", value="billing", description="Payments"),
                Topic(label="Technical", value="tech", description="Bugs"),
            ],
        )


async def _harness(tmp_path: Path, *, cooldown: int = 60) -> Harness:
    db = Database(url=f"sqlite:///{tmp_path / 'tickets.db'}")
    await db.connect()
    await run_migrations(db)

    transcripts = MagicMock()
    transcripts.generate = AsyncMock(
        side_effect=lambda channel: TranscriptArtifact(
            filename=f"transcript-{channel.name}.html", html="<html>transcript</html>"
        )
    )
    deps = TicketServiceDeps(
        guild_config_repo=GuildConfigRepository(db),
        ticket_repo=TicketRepository(db),
        cooldowns=CooldownTracker(MemoryCache(), cooldown),
        transcripts=transcripts,
    )
    service = TicketService(TicketConfig(close_delay_seconds=0), deps)
    return Harness(db, service, transcripts)


def _field(embed: discord.Embed, name: str) -> str | None:
    for embed_field in embed.fields:
        if embed_field.name == name:
            return embed_field.value
    return None


def test_channel_topic_round_trip() -> None:
    parsed = parse_channel_topic("Ticket ID: ticket-12 | UserID: 42 | Topic: billing | Claimed By: 9")
    assert parsed is not None
    assert (parsed.ticket_number, parsed.creator_id, parsed.topic_value, parsed.claimed_by_id) == (12, 42, "billing", 9)
    assert parse_channel_topic("Just a regular channel") is None
    assert parse_channel_topic(None) is None


def test_next_ticket_number_ignores_other_channels() -> None:
    assert next_ticket_number([]) == 1
    assert next_ticket_number(["ticket-3", "ticket-6", "general", "ticket-x", "old-ticket-40"]) == 7


def test_sanitize_channel_name() -> None:
    assert sanitize_channel_name("Urgent Issue!! User#1") == "urgent-issue-user-1"
    assert sanitize_channel_name("  Billing Issue!! ") == "billing-issue"
    with pytest.raises(InvalidNameError):
        sanitize_channel_name("!")
    with pytest.raises(InvalidNameError):
        sanitize_channel_name("a" * 101)


@pytest.mark.asyncio
async def test_unconfigured_guild_cannot_open(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    with pytest.raises(NotConfiguredError):
        await h.service.create_ticket(h.guild, h.creator, "billing", "Please help me")
    h.guild.create_text_channel.assert_not_awaited()
    await h.db.close()


@pytest.mark.asyncio
async def test_unknown_topic_is_rejected(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    with pytest.raises(UnknownTopicError):
        await h.service.create_ticket(h.guild, h.creator, "refunds", "Please help me")
    await h.db.close()


@pytest.mark.asyncio
async def test_create_ticket_names_channel_and_posts_control_panel(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()

    result = await h.service.create_ticket(h.guild, h.creator, "billing", "My invoice is wrong")

    assert result.channel.name == "ticket-7"
    assert result.record.ticket_number == 7
    assert result.warnings == []
    kwargs = h.guild.create_text_channel.await_args.kwargs
    assert kwargs["topic"] == f"Ticket ID: ticket-7 | UserID: {CREATOR_ID} | Topic: billing"
    overwrites = kwargs["overwrites"]
    assert overwrites[h.guild.default_role].view_channel is False
    assert overwrites[h.creator].send_messages is True

    welcome = result.channel.send.await_args_list[0].kwargs
    assert welcome["content"] == f"<@{CREATOR_ID}> <@&{ROLE_ID}>"
    assert _field(welcome["embed"], "Issue") == "My invoice is wrong"
    assert _field(welcome["embed"], "Status") == "Open"
    h.logs.send.assert_awaited_once()

    stored = await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, result.channel.id)
    assert stored is not None
    assert stored.topic_label == "Billing"
    await h.db.close()


@pytest.mark.asyncio
async def test_second_ticket_is_rejected_as_duplicate(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    first = await h.service.create_ticket(h.guild, h.creator, "billing", "First problem")

    with pytest.raises(DuplicateTicketError) as excinfo:
        await h.service.create_ticket(h.guild, h.creator, "tech", "Second problem")

    assert excinfo.value.channel_id == first.channel.id
    assert h.guild.create_text_channel.await_count == 1
    await h.db.close()


@pytest.mark.asyncio
async def test_cooldown_applies_after_ticket_is_gone(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    first = await h.service.create_ticket(h.guild, h.creator, "billing", "First problem")
    h.guild.channels.pop(first.channel.id)
    h.category.text_channels.remove(first.channel)

    with pytest.raises(CooldownActiveError):
        await h.service.create_ticket(h.guild, h.creator, "billing", "Another problem")

    # The vanished channel's record was closed during the duplicate scan.
    assert await h.service.deps.ticket_repo.list_open_by_creator(GUILD_ID, CREATOR_ID) == []
    await h.db.close()


@pytest.mark.asyncio
async def test_logs_failure_becomes_warning(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    h.logs.send.side_effect = discord.Forbidden(_response(403, "Forbidden"), "Missing Access")

    result = await h.service.create_ticket(h.guild, h.creator, "billing", "My invoice is wrong")

    assert len(result.warnings) == 1
    assert "logs channel" in result.warnings[0]
    titles = [message.embeds[0].title for message in result.channel.messages if message.embeds]
    assert "Warning" in titles
    await h.db.close()


@pytest.mark.asyncio
async def test_claim_is_idempotent_and_guarded(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel

    with pytest.raises(PermissionDeniedError):
        await h.service.claim(channel, h.creator)

    first = await h.service.claim(channel, h.staff)
    assert first.changed
    assert channel.topic.endswith(f"Claimed By: {STAFF_ID}")
    assert _field(channel.messages[0].embeds[0], "Claimed By") == f"<@{STAFF_ID}>"
    assert _field(channel.messages[0].embeds[0], "Status") == "In Progress"

    again = await h.service.claim(channel, h.staff)
    assert not again.changed
    assert again.notice == "You have already claimed this ticket."

    with pytest.raises(AlreadyClaimedByOtherError):
        await h.service.claim(channel, h.other_staff)
    forced = await h.service.claim(channel, h.other_staff, force=True)
    assert forced.record.claimed_by_id == OTHER_STAFF_ID

    released = await h.service.unclaim(channel, h.other_staff)
    assert released.record.claimed_by_id is None
    assert "Claimed By" not in channel.topic
    await h.db.close()


@pytest.mark.asyncio
async def test_lock_then_unlock_restores_status(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    await h.service.claim(channel, h.staff)

    locked = await h.service.lock(channel, h.staff)
    assert locked.record.status == "locked"
    target, kwargs = channel.set_permissions.await_args.args[0], channel.set_permissions.await_args.kwargs
    assert target is h.creator
    assert kwargs["overwrite"].send_messages is False
    assert _field(channel.messages[0].embeds[0], "Status") == "Locked"

    assert not (await h.service.lock(channel, h.staff)).changed

    unlocked = await h.service.unlock(channel, h.staff)
    assert unlocked.record.status == "in_progress"
    assert channel.set_permissions.await_args.kwargs["overwrite"].send_messages is True
    assert _field(channel.messages[0].embeds[0], "Status") == "In Progress"
    await h.db.close()


@pytest.mark.asyncio
async def test_missing_control_panel_is_reported(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    channel.messages.clear()

    result = await h.service.lock(channel, h.staff)

    assert result.changed
    assert not result.panel_updated
    assert result.notice is not None
    stored = await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, channel.id)
    assert stored is not None and stored.is_locked
    await h.db.close()


@pytest.mark.asyncio
async def test_rename_add_and_remove(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    guest = make_member(h.guild, 999)

    await h.service.rename(channel, h.staff, "Refund for Order #42")
    assert channel.name == "refund-for-order-42"

    await h.service.add_user(channel, h.staff, guest)
    overwrite = channel.set_permissions.await_args.kwargs["overwrite"]
    assert overwrite.view_channel is True
    assert overwrite.send_messages is True

    await h.service.remove_user(channel, h.staff, guest)
    assert channel.set_permissions.await_args.kwargs["overwrite"] is None

    with pytest.raises(ValidationError):
        await h.service.remove_user(channel, h.staff, h.creator)
    await h.db.close()


@pytest.mark.asyncio
async def test_close_requires_confirmation_step(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel

    with pytest.raises(TicketStateError):
        await h.service.close_ticket(channel, h.staff)
    h.transcripts.generate.assert_not_awaited()
    channel.delete.assert_not_awaited()
    await h.db.close()


@pytest.mark.asyncio
async def test_close_ticket_archives_and_deletes(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    assert channel.name == "ticket-7"

    await h.service.request_close(channel, h.creator)
    assert _field(channel.messages[0].embeds[0], "Status") == "Closing"

    h.logs.send.side_effect = discord.Forbidden(_response(403, "Forbidden"), "Missing Access")
    report = await h.service.close_ticket(channel, h.staff)

    assert report.transcript.filename == "transcript-ticket-7.html"
    assert not report.logged
    assert len(report.warnings) == 1
    assert report.dm_sent
    h.creator.send.assert_awaited_once()
    assert h.creator.send.await_args.kwargs["file"].filename == "transcript-ticket-7.html"
    channel.delete.assert_awaited_once()
    titles = [message.embeds[0].title for message in channel.messages if message.embeds]
    assert "Warning" in titles
    assert "Ticket Closing" in titles
    assert h.guild.get_channel(channel.id) is None

    stored = await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, channel.id)
    assert stored is not None
    assert stored.status == "closed"
    assert stored.closed_by_id == STAFF_ID
    await h.db.close()


@pytest.mark.asyncio
async def test_close_ticket_posts_transcript_to_logs(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    await h.service.request_close(channel, h.staff)
    h.logs.send.reset_mock()

    report = await h.service.close_ticket(channel, h.staff)

    h.transcripts.generate.assert_awaited_once_with(channel)
    assert report.logged
    assert report.warnings == []
    h.logs.send.assert_awaited_once()
    log_kwargs = h.logs.send.await_args.kwargs
    assert log_kwargs["file"].filename == "transcript-ticket-7.html"
    assert log_kwargs["embed"].title == "Ticket Closed (#7)"
    h.creator.send.assert_awaited_once()
    titles = [message.embeds[0].title for message in channel.messages if message.embeds]
    assert titles.count("Ticket Closing") == 1
    channel.delete.assert_awaited_once()
    await h.db.close()


@pytest.mark.asyncio
async def test_silent_close_skips_notice_and_tolerates_closed_dms(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    await h.service.request_close(channel, h.staff)
    h.creator.send.side_effect = discord.Forbidden(_response(403, "Forbidden"), "Cannot send messages to this user")

    report = await h.service.close_ticket(channel, h.staff, silent=True)

    assert not report.dm_sent
    titles = [message.embeds[0].title for message in channel.messages if message.embeds]
    assert "Ticket Closing" not in titles
    channel.delete.assert_awaited_once()
    await h.db.close()


@pytest.mark.asyncio
async def test_transcript_failure_aborts_close(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    channel = (await h.service.create_ticket(h.guild, h.creator, "billing", "Help please")).channel
    await h.service.request_close(channel, h.staff)
    h.transcripts.generate.side_effect = ExternalCallError(action="generate the transcript")

    with pytest.raises(ExternalCallError):
        await h.service.close_ticket(channel, h.staff)

    channel.delete.assert_not_awaited()
    stored = await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, channel.id)
    assert stored is not None
    assert stored.is_closing
    assert not stored.is_closed

    cancelled = await h.service.cancel_close(channel, h.staff)
    assert cancelled.record.status == "open"
    await h.db.close()


@pytest.mark.asyncio
async def test_non_ticket_channels_are_rejected(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    plain = make_text_channel(h.guild, 600, "general")

    with pytest.raises(NotATicketChannelError):
        await h.service.lock(plain, h.staff)
    with pytest.raises(NotATicketChannelError):
        await h.service.get_ticket_for_channel(SimpleNamespace(id=601))
    await h.db.close()


@pytest.mark.asyncio
async def test_legacy_channel_is_adopted_from_topic(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    legacy = make_text_channel(
        h.guild,
        700,
        "ticket-4",
        topic=f"Ticket ID: ticket-4 | UserID: {CREATOR_ID} | Topic: tech | Claimed By: {STAFF_ID}",
        category_id=CATEGORY_ID,
    )

    record = await h.service.get_ticket_for_channel(legacy)

    assert record.ticket_number == 4
    assert record.creator_id == CREATOR_ID
    assert record.topic_label == "Technical"
    assert record.claimed_by_id == STAFF_ID
    assert await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, 700) is not None
    await h.db.close()


@pytest.mark.asyncio
async def test_channels_outside_ticket_category_are_never_adopted(tmp_path: Path) -> None:
    h = await _harness(tmp_path)
    await h.configure()
    notes = make_text_channel(h.guild, 710, "staff-notes", topic=f"Escalation contact UserID: {CREATOR_ID}")

    with pytest.raises(NotATicketChannelError):
        await h.service.get_ticket_for_channel(notes)
    with pytest.raises(NotATicketChannelError):
        await h.service.request_close(notes, h.staff)

    assert await h.service.deps.ticket_repo.get_by_channel(GUILD_ID, 710) is None
    notes.delete.assert_not_awaited()
    await h.db.close()


def test_build_channel_topic_includes_claim() -> None:
    record = SimpleNamespace(channel_name="ticket-2", creator_id=5, topic_value="billing")
    assert build_channel_topic(record) == "Ticket ID: ticket-2 | UserID: 5 | Topic: billing"  # type: ignore[arg-type]
    assert build_channel_topic(record, claimed_by_id=8).endswith("| Claimed By: 8")  # type: ignore[arg-type]
