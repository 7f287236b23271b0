from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.guild_config_repo.ensure(guild.id)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.guild_config_repo.ensure(guild.id)
        LOGGER.info("Created ticket configuration for new guild", extra={"guild_id": guild.id})

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, discord.TextChannel):
            return
        if await self.bot.ticket_repo.mark_channel_closed(channel.id):
            LOGGER.info(
                "Ticket channel deleted outside the bot; record closed",
                extra={"guild_id": channel.guild.id, "channel_id": channel.id},
            )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(EventsCog(bot))
