from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import NotATicketChannelError, ValidationError
from services.ticket_service import ActionResult
from utils.embeds import make_embed, staff_embed, success_embed, warning_embed
from views.ticket_controls import CloseConfirmView, prompt_close_confirmation

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    """Commands run from inside a ticket channel."""

    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    def _context(self, ctx: commands.Context[TicketBot]) -> tuple[discord.TextChannel, discord.Member]:
        if ctx.guild is None or not isinstance(ctx.author, discord.Member):
            raise ValidationError(user_message="Ticket commands can only be used inside a server.")
        if not isinstance(ctx.channel, discord.TextChannel):
            raise NotATicketChannelError()
        return ctx.channel, ctx.author

    async def _announce(
        self, ctx: commands.Context[TicketBot], embed: discord.Embed, notice: str | None = None
    ) -> None:
        """Post the change in the channel and acknowledge the requester privately."""
        await ctx.channel.send(embed=embed)
        if notice:
            await ctx.send(embed=warning_embed(notice), ephemeral=True)
        elif ctx.interaction is not None:
            await ctx.send(embed=success_embed("Done."), ephemeral=True)

    async def _report(
        self, ctx: commands.Context[TicketBot], result: ActionResult, title: str, description: str
    ) -> None:
        if not result.changed:
            await ctx.send(embed=warning_embed(result.notice or "Nothing changed."), ephemeral=True)
            return
        await self._announce(ctx, staff_embed(title, description), result.notice)

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Manage the current ticket.")
    @commands.guild_only()
    async def ticket(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/ticket claim [force]` take ownership\n"
                    "`/ticket unclaim` release ownership\n"
                    "`/ticket lock` / `/ticket unlock` toggle the creator's messages\n"
                    "`/ticket rename <name>` rename the channel\n"
                    "`/ticket add <member>` / `/ticket remove <member>` manage access\n"
                    "`/ticket close [silent]` archive and delete",
                ),
                mention_author=False,
            )

    @ticket.command(name="claim", description="Claim this ticket.")
    async def ticket_claim(self, ctx: commands.Context[TicketBot], force: bool = False) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.ticket_service.claim(channel, member, force=force)
        await self._report(ctx, result, "Ticket Claimed", f"This ticket is now handled by {member.mention}.")

    @ticket.command(name="unclaim", description="Release your claim on this ticket.")
    async def ticket_unclaim(self, ctx: commands.Context[TicketBot]) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.ticket_service.unclaim(channel, member)
        await self._report(ctx, result, "Ticket Unclaimed", f"{member.mention} released this ticket.")

    @ticket.command(name="lock", description="Stop the ticket creator from sending messages.")
    async def ticket_lock(self, ctx: commands.Context[TicketBot]) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.ticket_service.lock(channel, member)
        await self._report(ctx, result, "Ticket Locked", f"{member.mention} locked this ticket.")

    @ticket.command(name="unlock", description="Let the ticket creator send messages again.")
    async def ticket_unlock(self, ctx: commands.Context[TicketBot]) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.ticket_service.unlock(channel, member)
        await self._report(ctx, result, "Ticket Unlocked", f"{member.mention} unlocked this ticket.")

    @ticket.command(name="rename", description="Rename this ticket channel.")
    async def ticket_rename(self, ctx: commands.Context[TicketBot], *, name: str) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        await self.bot.ticket_service.rename(channel, member, name)
        await self._announce(ctx, success_embed(f"Ticket renamed to {channel.mention}."))

    @ticket.command(name="add", description="Give a member access to this ticket.")
    async def ticket_add(self, ctx: commands.Context[TicketBot], user: discord.Member) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        await self.bot.ticket_service.add_user(channel, member, user)
        await self._announce(ctx, success_embed(f"{user.mention} was added to this ticket."))

    @ticket.command(name="remove", description="Remove a member's access to this ticket.")
    async def ticket_remove(self, ctx: commands.Context[TicketBot], user: discord.Member) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        await self.bot.ticket_service.remove_user(channel, member, user)
        await self._announce(ctx, success_embed(f"{user.mention} was removed from this ticket."))

    @ticket.command(name="close", description="Close this ticket after confirmation.")
    async def ticket_close(self, ctx: commands.Context[TicketBot], silent: bool = False) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.ticket_service.request_close(channel, member)
        if not result.changed:
            await ctx.send(embed=warning_embed(result.notice or "Nothing changed."), ephemeral=True)
            return
        if ctx.interaction is not None:
            await prompt_close_confirmation(ctx.interaction, channel, member, silent=silent)
            return
        view = CloseConfirmView(self.bot.ticket_service, channel, member, silent=silent)
        view.message = await ctx.reply(
            embed=staff_embed(
                "Close this ticket?",
                "A transcript will be archived and the channel deleted. This cannot be undone.",
            ),
            view=view,
            mention_author=False,
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
