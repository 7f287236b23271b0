from __future__ import annotations

import logging
from typing import Literal

import discord
from discord import app_commands
from discord.ext import commands

from core.bot import TicketBot
from core.errors import MissingPermissionError, NotConfiguredError, ValidationError, discord_call
from services import topic_registry
from services.ticket_service import CATEGORY_PERMISSIONS, LOGS_PERMISSIONS, missing_bot_permissions
from utils.constants import DEFAULT_PANEL_DESCRIPTION, DEFAULT_PANEL_TITLE
from utils.decorators import ensure_config_admin
from utils.embeds import config_embed, make_embed, panel_embed, success_embed, topic_list_text
from views.ticket_panel import PanelStyle, build_panel_view, choose_panel_style

LOGGER = logging.getLogger(__name__)


def _require_bot_permissions(channel: discord.abc.GuildChannel, required: dict[str, str]) -> None:
    missing = missing_bot_permissions(channel, required)
    if missing:
        raise MissingPermissionError(capability=", ".join(missing), target=channel.name)


def _guild(ctx: commands.Context[TicketBot]) -> discord.Guild:
    if ctx.guild is None:
        raise commands.NoPrivateMessage()
    return ctx.guild


class AdminCog(commands.Cog):
    """Server configuration: channels, support role, topics and the ticket panel."""

    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def cog_check(self, ctx: commands.Context[TicketBot]) -> bool:
        # Slash subcommands do not inherit group checks.
        return ensure_config_admin(ctx)

    @commands.hybrid_group(
        name="ticket-config", with_app_command=True, description="Configure the ticket system."
    )
    @commands.guild_only()
    @app_commands.default_permissions(manage_channels=True)
    async def ticket_config(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await self.config_view(ctx)

    @ticket_config.command(name="view", description="Show the current ticket configuration.")
    async def config_view(self, ctx: commands.Context[TicketBot]) -> None:
        guild = _guild(ctx)
        config = await self.bot.guild_config_repo.get(guild.id)
        await ctx.reply(embed=config_embed(guild, config), mention_author=False, ephemeral=True)

    @ticket_config.command(name="set", description="Set the ticket category, logs channel or support role.")
    async def config_set(
        self,
        ctx: commands.Context[TicketBot],
        category: discord.CategoryChannel | None = None,
        logs_channel: discord.TextChannel | None = None,
        support_role: discord.Role | None = None,
    ) -> None:
        guild = _guild(ctx)
        if category is None and logs_channel is None and support_role is None:
            raise ValidationError(user_message="Provide at least one of category, logs_channel or support_role.")

        fields: dict[str, int] = {}
        if category is not None:
            _require_bot_permissions(category, CATEGORY_PERMISSIONS)
            fields["category_id"] = category.id
        if logs_channel is not None:
            _require_bot_permissions(logs_channel, LOGS_PERMISSIONS)
            fields["logs_channel_id"] = logs_channel.id
        if support_role is not None:
            fields["support_role_id"] = support_role.id

        config = await self.bot.guild_config_repo.patch(guild.id, **fields)
        LOGGER.info(
            "Ticket configuration updated: %s",
            ", ".join(sorted(fields)),
            extra={"guild_id": guild.id, "user_id": ctx.author.id},
        )
        await ctx.reply(embed=config_embed(guild, config), mention_author=False, ephemeral=True)

    @ticket_config.command(name="reset", description="Clear the ticket configuration and all topics.")
    async def config_reset(self, ctx: commands.Context[TicketBot]) -> None:
        guild = _guild(ctx)
        await self.bot.guild_config_repo.reset(guild.id)
        LOGGER.info("Ticket configuration reset", extra={"guild_id": guild.id, "user_id": ctx.author.id})
        await ctx.reply(
            embed=success_embed("Ticket configuration reset. Category, role, logs channel and topics were cleared."),
            mention_author=False,
            ephemeral=True,
        )

    @ticket_config.command(name="topic-add", description="Add a ticket topic.")
    async def topic_add(
        self,
        ctx: commands.Context[TicketBot],
        label: str,
        value: str,
        description: str = "",
        emoji: str | None = None,
    ) -> None:
        guild = _guild(ctx)
        topic = topic_registry.build_topic(label, value, description, emoji)
        config = await self.bot.guild_config_repo.get(guild.id)
        topic_registry.add_topic(config, topic)
        await self.bot.guild_config_repo.patch(guild.id, topics=config.topics)
        await ctx.reply(
            embed=success_embed(f"Topic **{topic.label}** (`{topic.value}`) added."),
            mention_author=False,
            ephemeral=True,
        )

    @ticket_config.command(name="topic-remove", description="Remove a ticket topic by its value.")
    async def topic_remove(self, ctx: commands.Context[TicketBot], value: str) -> None:
        guild = _guild(ctx)
        config = await self.bot.guild_config_repo.get(guild.id)
        removed = topic_registry.remove_topic(config, value.strip().lower())
        await self.bot.guild_config_repo.patch(guild.id, topics=config.topics)
        await ctx.reply(
            embed=success_embed(f"Topic **{removed.label}** (`{removed.value}`) removed."),
            mention_author=False,
            ephemeral=True,
        )

    @ticket_config.command(name="topics", description="List the configured ticket topics.")
    async def topic_list(self, ctx: commands.Context[TicketBot]) -> None:
        guild = _guild(ctx)
        config = await self.bot.guild_config_repo.get(guild.id)
        await ctx.reply(
            embed=make_embed(f"Ticket topics ({len(config.topics)})", topic_list_text(config)),
            mention_author=False,
            ephemeral=True,
        )

    @ticket_config.command(name="panel", description="Post the ticket panel.")
    async def panel(
        self,
        ctx: commands.Context[TicketBot],
        channel: discord.TextChannel | None = None,
        style: Literal["buttons", "select"] | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> None:
        guild = _guild(ctx)
        config = await self.bot.guild_config_repo.get(guild.id)
        if not config.is_configured:
            raise NotConfiguredError()
        chosen = choose_panel_style(config, PanelStyle(style) if style else None)
        target = channel or ctx.channel
        if not isinstance(target, discord.TextChannel):
            raise ValidationError(user_message="The panel can only be posted in a text channel.")

        embed = panel_embed(title or DEFAULT_PANEL_TITLE, description or DEFAULT_PANEL_DESCRIPTION)
        with discord_call("Send Messages", f"#{target.name}", action="post the ticket panel"):
            await target.send(embed=embed, view=build_panel_view(config, chosen))
        LOGGER.info(
            "Ticket panel posted with %d topics as %s",
            len(config.topics),
            chosen.value,
            extra={"guild_id": guild.id, "channel_id": target.id, "user_id": ctx.author.id},
        )
        await ctx.reply(
            embed=success_embed(f"Ticket panel posted in {target.mention}."),
            mention_author=False,
            ephemeral=True,
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(AdminCog(bot))
