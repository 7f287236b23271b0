from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import GuildConfigRepository, TicketRepository
from services.cache import CacheBackend, build_cache
from services.cooldowns import CooldownTracker
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService
from views.ticket_controls import TicketControlsView
from views.ticket_panel import TopicButton, TopicSelect

LOGGER = logging.getLogger(__name__)


class TicketBot(commands.Bot):
    """Application context: owns the store, the cooldown tracker and the services."""

    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=commands.when_mentioned_or(config.discord.prefix),
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=True, users=True, replied_user=False),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None

        # Initialized during setup_hook.
        self.guild_config_repo: GuildConfigRepository
        self.ticket_repo: TicketRepository
        self.cooldowns: CooldownTracker
        self.transcript_service: TranscriptService
        self.ticket_service: TicketService

    async def setup_hook(self) -> None:
        await self.database.connect()
        await run_migrations(self.database, self.root_dir / "database" / "migrations")
        self.cache = await build_cache(self.config.redis)

        self.guild_config_repo = GuildConfigRepository(self.database)
        self.ticket_repo = TicketRepository(self.database)
        self.cooldowns = CooldownTracker(self.cache, self.config.tickets.creation_cooldown_seconds)
        self.transcript_service = TranscriptService(self.config.transcripts, bot=self)
        self.ticket_service = TicketService(
            self.config.tickets,
            TicketServiceDeps(
                guild_config_repo=self.guild_config_repo,
                ticket_repo=self.ticket_repo,
                cooldowns=self.cooldowns,
                transcripts=self.transcript_service,
            ),
        )

        # Panels and control rows posted before a restart keep routing here.
        self.add_dynamic_items(TopicButton, TopicSelect)
        self.add_view(TicketControlsView())

        await load_extensions(self, self.config.enabled_extensions)
        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        await super().close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
