from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, cast

import discord

from core.errors import BotError, ValidationError, humanize_error, log_error, send_error_response
from services.lifecycle import TicketState
from utils.constants import (
    CONFIRM_TIMEOUT_SECONDS,
    CUSTOM_ID_CLAIM,
    CUSTOM_ID_CLOSE,
    CUSTOM_ID_LOCK,
    CUSTOM_ID_UNLOCK,
)
from utils.embeds import staff_embed, success_embed, warning_embed

if TYPE_CHECKING:
    from core.bot import TicketBot
    from services.ticket_service import ActionResult, TicketService

LOGGER = logging.getLogger(__name__)

TicketAction = Callable[["TicketService", discord.TextChannel, discord.Member], Awaitable["ActionResult"]]


def _interaction_context(interaction: discord.Interaction) -> tuple[TicketService, discord.TextChannel, discord.Member]:
    if not isinstance(interaction.channel, discord.TextChannel) or not isinstance(
        interaction.user, discord.Member
    ):
        raise ValidationError(user_message="Ticket controls can only be used inside a server ticket channel.")
    bot = cast("TicketBot", interaction.client)
    return bot.ticket_service, interaction.channel, interaction.user


async def send_action_result(
    interaction: discord.Interaction, result: ActionResult, title: str, description: str
) -> None:
    """Announce a state change publicly, or only tell the actor about a no-op."""
    if not result.changed:
        await interaction.followup.send(embed=warning_embed(result.notice or "Nothing changed."), ephemeral=True)
        return
    await interaction.followup.send(embed=staff_embed(title, description))
    if result.notice:
        await interaction.followup.send(embed=warning_embed(result.notice), ephemeral=True)


class TicketControlsView(discord.ui.View):
    """Claim / Lock / Unlock / Close row attached to the ticket control panel.

    Registered once without a state so the buttons keep working after a
    restart; instances built with a state drop the irrelevant lock toggle.
    """

    def __init__(self, state: TicketState | None = None) -> None:
        super().__init__(timeout=None)
        if state is None:
            return
        self.remove_item(self.unlock_button if not state.is_locked else self.lock_button)
        self.claim_button.disabled = state.claimed_by_id is not None

    async def _run(self, interaction: discord.Interaction, action: TicketAction, title: str, description: str) -> None:
        service, channel, member = _interaction_context(interaction)
        await interaction.response.defer()
        result = await action(service, channel, member)
        await send_action_result(interaction, result, title, description.format(user=member.mention))

    @discord.ui.button(label="Claim", style=discord.ButtonStyle.primary, emoji="🙋", custom_id=CUSTOM_ID_CLAIM)
    async def claim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._run(
            interaction,
            lambda service, channel, member: service.claim(channel, member),
            "Ticket Claimed",
            "This ticket is now handled by {user}.",
        )

    @discord.ui.button(label="Lock", style=discord.ButtonStyle.secondary, emoji="🔒", custom_id=CUSTOM_ID_LOCK)
    async def lock_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._run(
            interaction,
            lambda service, channel, member: service.lock(channel, member),
            "Ticket Locked",
            "{user} locked this ticket. The creator can no longer send messages.",
        )

    @discord.ui.button(label="Unlock", style=discord.ButtonStyle.success, emoji="🔓", custom_id=CUSTOM_ID_UNLOCK)
    async def unlock_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._run(
            interaction,
            lambda service, channel, member: service.unlock(channel, member),
            "Ticket Unlocked",
            "{user} unlocked this ticket.",
        )

    @discord.ui.button(label="Close", style=discord.ButtonStyle.danger, emoji="🗑️", custom_id=CUSTOM_ID_CLOSE)
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        service, channel, member = _interaction_context(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await service.request_close(channel, member)
        if not result.changed:
            await interaction.followup.send(embed=warning_embed(result.notice or "Nothing changed."), ephemeral=True)
            return
        await prompt_close_confirmation(interaction, channel, member, silent=False)

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        log_error(error, "Ticket control failed. custom_id=%s", getattr(item, "custom_id", None))
        await send_error_response(interaction, humanize_error(error))


async def prompt_close_confirmation(
    interaction: discord.Interaction,
    channel: discord.TextChannel,
    requester: discord.Member,
    *,
    silent: bool,
) -> None:
    """Send the requester-only confirm/cancel prompt as a followup."""
    service = cast("TicketBot", interaction.client).ticket_service
    view = CloseConfirmView(service, channel, requester, silent=silent)
    embed = staff_embed(
        "Close this ticket?",
        "A transcript will be archived and the channel deleted. This cannot be undone.",
    )
    view.message = await interaction.followup.send(embed=embed, view=view, ephemeral=True, wait=True)


class CloseConfirmView(discord.ui.View):
    def __init__(
        self,
        service: TicketService,
        channel: discord.TextChannel,
        requester: discord.Member,
        *,
        silent: bool = False,
    ) -> None:
        super().__init__(timeout=CONFIRM_TIMEOUT_SECONDS)
        self.service = service
        self.channel = channel
        self.requester = requester
        self.silent = silent
        self.resolved = False
        self.message: discord.Message | None = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.requester.id:
            await send_error_response(interaction, "Only the member who asked to close this ticket can confirm.")
            return False
        return True

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger)
    async def confirm_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        self.resolved = True
        self.stop()
        await interaction.response.edit_message(
            embed=staff_embed("Closing ticket", "Archiving the transcript..."), view=None
        )
        report = await self.service.close_ticket(self.channel, self.requester, silent=self.silent)
        summary = "Ticket closed and channel deleted."
        if report.warnings:
            summary += "\n" + "\n".join(f"- {warning}" for warning in report.warnings)
        try:
            await interaction.followup.send(embed=success_embed(summary), ephemeral=True)
        except discord.HTTPException:
            LOGGER.debug("Close summary not delivered; the channel is already gone")

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary)
    async def cancel_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        self.resolved = True
        self.stop()
        await self.service.cancel_close(self.channel, self.requester)
        await interaction.response.edit_message(embed=success_embed("Close request cancelled."), view=None)

    async def on_timeout(self) -> None:
        if self.resolved:
            return
        try:
            await self.service.cancel_close(self.channel, self.requester)
        except BotError as exc:
            LOGGER.info("Could not cancel expired close request: %s", exc.user_message)
        if self.message is not None:
            try:
                await self.message.edit(embed=warning_embed("Close request expired."), view=None)
            except discord.HTTPException:
                LOGGER.debug("Expired close prompt could not be edited")

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        log_error(error, "Close confirmation failed. channel=%s", self.channel.id)
        await send_error_response(interaction, humanize_error(error))
