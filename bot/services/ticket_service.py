from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from uuid import uuid4

import discord

from core.config import TicketConfig
from core.errors import (
    BotError,
    ControlPanelNotFoundError,
    DuplicateTicketError,
    InvalidNameError,
    NotATicketChannelError,
    NotConfiguredError,
    PermissionDeniedError,
    UnknownTopicError,
    ValidationError,
    discord_call,
)
from database.models import GuildConfiguration, TicketRecord, Topic
from database.repositories import GuildConfigRepository, TicketRepository
from services import lifecycle
from services.cooldowns import CooldownTracker
from services.lifecycle import TicketState, Transition
from services.topic_registry import find_topic
from services.transcript_service import TranscriptArtifact, TranscriptService
from utils.constants import CHANNEL_NAME_MAX_LENGTH, CHANNEL_NAME_MIN_LENGTH, TICKET_CHANNEL_PREFIX
from utils.embeds import (
    apply_state_to_embed,
    close_log_embed,
    control_panel_embed,
    is_control_panel_embed,
    make_embed,
    open_log_embed,
    warning_embed,
)
from utils.time import utc_now_iso
from views.ticket_controls import TicketControlsView

LOGGER = logging.getLogger(__name__)

_TICKET_NAME_RE = re.compile(rf"^{TICKET_CHANNEL_PREFIX}(\d+)$")
_TICKET_ID_RE = re.compile(r"Ticket ID: ticket-(\d+)")
_CREATOR_RE = re.compile(r"UserID: (\d+)")
_TOPIC_RE = re.compile(r"Topic: ([^|]+)")
_CLAIMED_RE = re.compile(r"Claimed By: (\d+)")
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9]+")

CATEGORY_PERMISSIONS = {"view_channel": "View Channel", "manage_channels": "Manage Channels"}
LOGS_PERMISSIONS = {
    "view_channel": "View Channel",
    "send_messages": "Send Messages",
    "attach_files": "Attach Files",
}


@dataclass(slots=True)
class ChannelMetadata:
    creator_id: int
    topic_value: str
    ticket_number: int | None = None
    claimed_by_id: int | None = None


def build_channel_topic(record: TicketRecord, claimed_by_id: int | None = None) -> str:
    text = f"Ticket ID: {record.channel_name} | UserID: {record.creator_id} | Topic: {record.topic_value}"
    if claimed_by_id is not None:
        text += f" | Claimed By: {claimed_by_id}"
    return text


def parse_channel_topic(text: str | None) -> ChannelMetadata | None:
    if not text:
        return None
    creator = _CREATOR_RE.search(text)
    if creator is None:
        return None
    topic = _TOPIC_RE.search(text)
    number = _TICKET_ID_RE.search(text)
    claimed = _CLAIMED_RE.search(text)
    return ChannelMetadata(
        creator_id=int(creator.group(1)),
        topic_value=topic.group(1).strip() if topic else "unknown",
        ticket_number=int(number.group(1)) if number else None,
        claimed_by_id=int(claimed.group(1)) if claimed else None,
    )


def next_ticket_number(channel_names: list[str]) -> int:
    numbers = [int(match.group(1)) for name in channel_names if (match := _TICKET_NAME_RE.match(name))]
    return max(numbers, default=0) + 1


def sanitize_channel_name(raw: str) -> str:
    name = _INVALID_NAME_CHARS.sub("-", raw.lower()).strip("-")
    if not CHANNEL_NAME_MIN_LENGTH <= len(name) <= CHANNEL_NAME_MAX_LENGTH:
        raise InvalidNameError()
    return name


def missing_bot_permissions(channel: discord.abc.GuildChannel, required: dict[str, str]) -> list[str]:
    perms = channel.permissions_for(channel.guild.me)
    return [label for attr, label in required.items() if not getattr(perms, attr)]


def build_ticket_overwrites(
    guild: discord.Guild, creator: discord.Member, support_role: discord.Role
) -> dict[discord.abc.Snowflake, discord.PermissionOverwrite]:
    return {
        guild.default_role: discord.PermissionOverwrite(view_channel=False),
        creator: discord.PermissionOverwrite(
            view_channel=True,
            send_messages=True,
            attach_files=True,
            read_message_history=True,
        ),
        support_role: discord.PermissionOverwrite(
            view_channel=True,
            send_messages=True,
            attach_files=True,
            read_message_history=True,
            manage_messages=True,
        ),
        guild.me: discord.PermissionOverwrite(
            view_channel=True,
            send_messages=True,
            attach_files=True,
            read_message_history=True,
            manage_channels=True,
            manage_messages=True,
            embed_links=True,
        ),
    }


@dataclass(slots=True)
class TicketServiceDeps:
    guild_config_repo: GuildConfigRepository
    ticket_repo: TicketRepository
    cooldowns: CooldownTracker
    transcripts: TranscriptService


@dataclass(slots=True)
class CreationResult:
    record: TicketRecord
    channel: discord.TextChannel
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ActionResult:
    record: TicketRecord
    changed: bool = True
    notice: str | None = None
    panel_updated: bool = True


@dataclass(slots=True)
class CloseReport:
    record: TicketRecord
    transcript: TranscriptArtifact
    logged: bool
    dm_sent: bool
    warnings: list[str] = field(default_factory=list)


class TicketService:
    def __init__(self, config: TicketConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps

    # Configuration

    async def resolve_configuration(
        self, guild: discord.Guild
    ) -> tuple[GuildConfiguration, discord.CategoryChannel, discord.Role]:
        config = await self.deps.guild_config_repo.get(guild.id)
        if not config.is_configured:
            raise NotConfiguredError()
        category = guild.get_channel(config.category_id)  # type: ignore[arg-type]
        if not isinstance(category, discord.CategoryChannel):
            raise NotConfiguredError(
                user_message="The configured ticket category no longer exists. Run `/ticket-config set` again."
            )
        role = guild.get_role(config.support_role_id)  # type: ignore[arg-type]
        if role is None:
            raise NotConfiguredError(
                user_message="The configured support role no longer exists. Run `/ticket-config set` again."
            )
        return config, category, role

    @staticmethod
    def is_staff(member: discord.Member, config: GuildConfiguration) -> bool:
        if member.guild_permissions.administrator:
            return True
        return config.support_role_id is not None and member.get_role(config.support_role_id) is not None

    def _require_staff(self, member: discord.Member, config: GuildConfiguration, action: str) -> None:
        if not self.is_staff(member, config):
            raise PermissionDeniedError(user_message=f"Only the support team can {action} tickets.")

    # Creation

    async def find_open_ticket(
        self, guild: discord.Guild, category: discord.CategoryChannel, creator_id: int
    ) -> int | None:
        """Return the channel id of the user's open ticket, if any."""
        for record in await self.deps.ticket_repo.list_open_by_creator(guild.id, creator_id):
            if guild.get_channel(record.channel_id) is not None:
                return record.channel_id
            await self.deps.ticket_repo.mark_closed(record.id, closed_by_id=None)
            LOGGER.info(
                "Closed ticket record whose channel vanished",
                extra={"guild_id": guild.id, "channel_id": record.channel_id, "user_id": creator_id},
            )
        for channel in category.text_channels:
            metadata = parse_channel_topic(channel.topic)
            if metadata is not None and metadata.creator_id == creator_id:
                return channel.id
        return None

    async def check_can_open(
        self, guild: discord.Guild, creator: discord.Member, topic_value: str
    ) -> tuple[GuildConfiguration, discord.CategoryChannel, discord.Role, Topic]:
        """Run the creation preconditions in order; the first failure is raised."""
        config, category, support_role = await self.resolve_configuration(guild)
        topic = find_topic(config, topic_value)
        if topic is None:
            raise UnknownTopicError()
        existing_channel_id = await self.find_open_ticket(guild, category, creator.id)
        if existing_channel_id is not None:
            raise DuplicateTicketError(channel_id=existing_channel_id)
        await self.deps.cooldowns.check(creator.id)
        return config, category, support_role, topic

    async def create_ticket(
        self,
        guild: discord.Guild,
        creator: discord.Member,
        topic_value: str,
        description: str,
    ) -> CreationResult:
        config, category, support_role, topic = await self.check_can_open(guild, creator, topic_value)

        record = TicketRecord(
            id=str(uuid4()),
            ticket_number=next_ticket_number([channel.name for channel in category.channels]),
            guild_id=guild.id,
            channel_id=0,
            creator_id=creator.id,
            topic_value=topic.value,
            topic_label=topic.label,
            created_at=utc_now_iso(),
        )
        with discord_call("Manage Channels", category.name, action="create the ticket channel"):
            channel = await guild.create_text_channel(
                name=record.channel_name,
                category=category,
                overwrites=build_ticket_overwrites(guild, creator, support_role),
                topic=build_channel_topic(record),
                reason=f"Ticket opened by {creator} ({creator.id})",
            )
        record.channel_id = channel.id
        await self.deps.ticket_repo.create(record)

        with discord_call("Send Messages", f"#{channel.name}", action="post the ticket welcome message"):
            await channel.send(
                content=f"{creator.mention} {support_role.mention}",
                embed=control_panel_embed(record, description),
                view=TicketControlsView(state=TicketState.from_record(record)),
                allowed_mentions=discord.AllowedMentions(users=True, roles=True, everyone=False),
            )
        await self.deps.cooldowns.start(creator.id)
        LOGGER.info(
            "Ticket %s opened for topic %s",
            record.channel_name,
            topic.value,
            extra={"guild_id": guild.id, "channel_id": channel.id, "user_id": creator.id},
        )

        result = CreationResult(record=record, channel=channel)
        if config.logs_channel_id is not None:
            warning = await self._post_to_logs(guild, config, embed=open_log_embed(record, channel))
            if warning:
                result.warnings.append(warning)
                await self._warn_in_channel(channel, warning)
        return result

    # Lookup

    async def get_ticket_for_channel(self, channel: discord.abc.GuildChannel | discord.abc.Messageable | None) -> TicketRecord:
        if not isinstance(channel, discord.TextChannel):
            raise NotATicketChannelError()
        record = await self.deps.ticket_repo.get_by_channel(channel.guild.id, channel.id)
        if record is not None:
            return record
        metadata = parse_channel_topic(channel.topic)
        if metadata is None:
            raise NotATicketChannelError()
        config = await self.deps.guild_config_repo.get(channel.guild.id)
        if config.category_id is None or channel.category_id != config.category_id:
            raise NotATicketChannelError()
        return await self._adopt_channel(channel, config, metadata)

    async def _adopt_channel(
        self, channel: discord.TextChannel, config: GuildConfiguration, metadata: ChannelMetadata
    ) -> TicketRecord:
        """Create a record for a ticket channel that only carries topic metadata."""
        number = metadata.ticket_number
        if number is None:
            match = _TICKET_NAME_RE.match(channel.name)
            number = int(match.group(1)) if match else 0
        topic = find_topic(config, metadata.topic_value)
        creator = channel.guild.get_member(metadata.creator_id)
        is_locked = creator is not None and channel.overwrites_for(creator).send_messages is False
        record = TicketRecord(
            id=str(uuid4()),
            ticket_number=number,
            guild_id=channel.guild.id,
            channel_id=channel.id,
            creator_id=metadata.creator_id,
            topic_value=metadata.topic_value,
            topic_label=topic.label if topic else metadata.topic_value,
            created_at=utc_now_iso(),
        )
        TicketState(claimed_by_id=metadata.claimed_by_id, is_locked=is_locked).apply_to(record)
        await self.deps.ticket_repo.create(record)
        LOGGER.info(
            "Adopted legacy ticket channel #%s",
            channel.name,
            extra={"guild_id": channel.guild.id, "channel_id": channel.id},
        )
        return record

    async def _resolve_member(self, guild: discord.Guild, user_id: int) -> discord.Member | None:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None

    # Control panel

    async def find_control_panel(self, channel: discord.TextChannel) -> discord.Message:
        bot_id = channel.guild.me.id
        async for message in channel.history(limit=self.config.control_panel_scan_limit):
            if message.author.id != bot_id:
                continue
            if any(is_control_panel_embed(embed) for embed in message.embeds):
                return message
        raise ControlPanelNotFoundError()

    async def refresh_control_panel(self, channel: discord.TextChannel, state: TicketState) -> bool:
        try:
            message = await self.find_control_panel(channel)
        except ControlPanelNotFoundError:
            LOGGER.warning(
                "Control panel not found in the last %d messages",
                self.config.control_panel_scan_limit,
                extra={"guild_id": channel.guild.id, "channel_id": channel.id},
            )
            return False
        embeds = [
            apply_state_to_embed(embed.copy(), state) if is_control_panel_embed(embed) else embed
            for embed in message.embeds
        ]
        with discord_call("Send Messages", f"#{channel.name}", action="update the ticket status message"):
            await message.edit(embeds=embeds, view=TicketControlsView(state=state))
        return True

    async def _commit(
        self,
        channel: discord.TextChannel,
        record: TicketRecord,
        transition: Transition,
        side_effect: Callable[[], Awaitable[None]] | None = None,
    ) -> ActionResult:
        if not transition.changed:
            return ActionResult(record=record, changed=False, notice=transition.notice)
        if side_effect is not None:
            await side_effect()
        transition.state.apply_to(record)
        await self.deps.ticket_repo.update_state(record)
        panel_updated = await self.refresh_control_panel(channel, transition.state)
        return ActionResult(
            record=record,
            notice=None if panel_updated else ControlPanelNotFoundError().user_message,
            panel_updated=panel_updated,
        )

    # Transitions

    async def _staff_context(
        self, channel: discord.abc.GuildChannel | discord.abc.Messageable | None, actor: discord.Member, action: str
    ) -> tuple[discord.TextChannel, TicketRecord]:
        if not isinstance(channel, discord.TextChannel):
            raise NotATicketChannelError()
        record = await self.get_ticket_for_channel(channel)
        config = await self.deps.guild_config_repo.get(channel.guild.id)
        self._require_staff(actor, config, action)
        return channel, record

    async def claim(self, channel: discord.TextChannel, actor: discord.Member, *, force: bool = False) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "claim")
        transition = lifecycle.claim(TicketState.from_record(record), actor.id, force=force)

        async def rewrite_topic() -> None:
            with discord_call("Manage Channels", f"#{channel.name}", action="update the ticket channel topic"):
                await channel.edit(topic=build_channel_topic(record, claimed_by_id=actor.id))

        return await self._commit(channel, record, transition, rewrite_topic)

    async def unclaim(self, channel: discord.TextChannel, actor: discord.Member) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "unclaim")
        transition = lifecycle.unclaim(TicketState.from_record(record))

        async def rewrite_topic() -> None:
            with discord_call("Manage Channels", f"#{channel.name}", action="update the ticket channel topic"):
                await channel.edit(topic=build_channel_topic(record))

        return await self._commit(channel, record, transition, rewrite_topic)

    async def _set_creator_send(self, channel: discord.TextChannel, record: TicketRecord, allowed: bool) -> None:
        creator = await self._resolve_member(channel.guild, record.creator_id)
        if creator is None:
            LOGGER.info(
                "Ticket creator left the server; send permission unchanged",
                extra={"guild_id": channel.guild.id, "channel_id": channel.id, "user_id": record.creator_id},
            )
            return
        overwrite = channel.overwrites_for(creator)
        overwrite.send_messages = allowed
        with discord_call("Manage Channels", f"#{channel.name}", action="update the creator's permissions"):
            await channel.set_permissions(creator, overwrite=overwrite, reason="Ticket lock toggled")

    async def lock(self, channel: discord.TextChannel, actor: discord.Member) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "lock")
        transition = lifecycle.lock(TicketState.from_record(record))
        return await self._commit(
            channel, record, transition, lambda: self._set_creator_send(channel, record, False)
        )

    async def unlock(self, channel: discord.TextChannel, actor: discord.Member) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "unlock")
        transition = lifecycle.unlock(TicketState.from_record(record))
        return await self._commit(
            channel, record, transition, lambda: self._set_creator_send(channel, record, True)
        )

    async def rename(self, channel: discord.TextChannel, actor: discord.Member, new_name: str) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "rename")
        lifecycle.ensure_mutable(TicketState.from_record(record))
        name = sanitize_channel_name(new_name)
        with discord_call("Manage Channels", f"#{channel.name}", action="rename the ticket channel"):
            await channel.edit(name=name, reason=f"Ticket renamed by {actor} ({actor.id})")
        return ActionResult(record=record)

    async def add_user(self, channel: discord.TextChannel, actor: discord.Member, member: discord.Member) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "add users to")
        lifecycle.ensure_mutable(TicketState.from_record(record))
        overwrite = channel.overwrites_for(member)
        overwrite.update(view_channel=True, send_messages=True, attach_files=True, read_message_history=True)
        with discord_call("Manage Channels", f"#{channel.name}", action="add the member to the ticket"):
            await channel.set_permissions(member, overwrite=overwrite, reason=f"Added by {actor} ({actor.id})")
        return ActionResult(record=record)

    async def remove_user(
        self, channel: discord.TextChannel, actor: discord.Member, member: discord.Member
    ) -> ActionResult:
        channel, record = await self._staff_context(channel, actor, "remove users from")
        lifecycle.ensure_mutable(TicketState.from_record(record))
        if member.id == record.creator_id:
            raise ValidationError(user_message="The ticket creator cannot be removed. Close the ticket instead.")
        with discord_call("Manage Channels", f"#{channel.name}", action="remove the member from the ticket"):
            await channel.set_permissions(member, overwrite=None, reason=f"Removed by {actor} ({actor.id})")
        return ActionResult(record=record)

    # Closure

    async def request_close(self, channel: discord.TextChannel, actor: discord.Member) -> ActionResult:
        record = await self.get_ticket_for_channel(channel)
        if actor.id != record.creator_id:
            config = await self.deps.guild_config_repo.get(channel.guild.id)
            self._require_staff(actor, config, "close")
        transition = lifecycle.request_close(TicketState.from_record(record))
        return await self._commit(channel, record, transition)

    async def cancel_close(self, channel: discord.TextChannel, actor: discord.Member) -> ActionResult:
        record = await self.get_ticket_for_channel(channel)
        transition = lifecycle.cancel_close(TicketState.from_record(record))
        LOGGER.info(
            "Close request cancelled",
            extra={"guild_id": channel.guild.id, "channel_id": channel.id, "user_id": actor.id},
        )
        return await self._commit(channel, record, transition)

    async def close_ticket(
        self, channel: discord.TextChannel, actor: discord.Member, *, silent: bool = False
    ) -> CloseReport:
        """Archive, notify and delete a ticket whose close request was confirmed."""
        record = await self.get_ticket_for_channel(channel)
        transition = lifecycle.close(TicketState.from_record(record))
        guild = channel.guild
        context = {"guild_id": guild.id, "channel_id": channel.id, "user_id": actor.id}
        channel_name = channel.name

        transcript = await self.deps.transcripts.generate(channel)
        report = CloseReport(record=record, transcript=transcript, logged=False, dm_sent=False)

        config = await self.deps.guild_config_repo.get(guild.id)
        warning = await self._post_to_logs(
            guild,
            config,
            embed=close_log_embed(record, channel_name, actor),
            file=transcript.to_file(),
        )
        if warning:
            report.warnings.append(warning)
            await self._warn_in_channel(channel, warning)
        else:
            report.logged = config.logs_channel_id is not None

        report.dm_sent = await self._send_transcript_to_creator(guild, record, channel_name, transcript)

        if not silent:
            try:
                await channel.send(
                    embed=make_embed(
                        "Ticket Closing",
                        f"Closed by {actor.mention}. This channel will be deleted in "
                        f"{self.config.close_delay_seconds} seconds.",
                        color=discord.Color.red(),
                    )
                )
            except discord.HTTPException:
                LOGGER.warning("Closing notice could not be posted", extra=context)

        transition.state.apply_to(record)
        await self.deps.ticket_repo.mark_closed(record.id, closed_by_id=actor.id)
        LOGGER.info("Ticket %s closed", channel_name, extra=context)

        await asyncio.sleep(self.config.close_delay_seconds)
        with discord_call("Manage Channels", f"#{channel_name}", action="delete the ticket channel"):
            await channel.delete(reason=f"Ticket closed by {actor} ({actor.id})")
        return report

    async def _post_to_logs(
        self,
        guild: discord.Guild,
        config: GuildConfiguration,
        *,
        embed: discord.Embed,
        file: discord.File | None = None,
    ) -> str | None:
        """Send to the logs channel; returns a warning text instead of raising."""
        if config.logs_channel_id is None:
            return None
        logs_channel = guild.get_channel(config.logs_channel_id)
        if not isinstance(logs_channel, discord.TextChannel):
            LOGGER.warning("Configured logs channel is missing", extra={"guild_id": guild.id})
            return "The configured logs channel no longer exists, so nothing was logged."
        try:
            with discord_call("Send Messages", f"#{logs_channel.name}", action="post to the logs channel"):
                if file is not None:
                    await logs_channel.send(embed=embed, file=file)
                else:
                    await logs_channel.send(embed=embed)
        except BotError as exc:
            LOGGER.warning(
                "Logs channel delivery failed: %s",
                type(exc).__name__,
                extra={"guild_id": guild.id, "channel_id": logs_channel.id},
            )
            return f"Could not post to the logs channel. {exc.user_message}"
        return None

    async def _warn_in_channel(self, channel: discord.TextChannel, message: str) -> None:
        try:
            await channel.send(embed=warning_embed(message))
        except discord.HTTPException:
            LOGGER.warning(
                "In-channel warning could not be posted",
                extra={"guild_id": channel.guild.id, "channel_id": channel.id},
            )

    async def _send_transcript_to_creator(
        self,
        guild: discord.Guild,
        record: TicketRecord,
        channel_name: str,
        transcript: TranscriptArtifact,
    ) -> bool:
        context = {"guild_id": guild.id, "user_id": record.creator_id}
        try:
            creator = await self._resolve_member(guild, record.creator_id)
        except discord.HTTPException:
            creator = None
        if creator is None:
            LOGGER.info("Ticket creator not reachable for transcript DM", extra=context)
            return False
        embed = make_embed(
            "Your ticket was closed",
            f"Your ticket `#{channel_name}` in **{guild.name}** was closed. The transcript is attached.",
        )
        try:
            await creator.send(embed=embed, file=transcript.to_file())
        except discord.HTTPException:
            LOGGER.info("Transcript DM was rejected", extra=context)
            return False
        return True
