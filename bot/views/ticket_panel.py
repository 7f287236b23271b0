from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, cast

import discord

from core.errors import (
    TooManyTopicsForButtonsError,
    ValidationError,
    humanize_error,
    log_error,
    send_error_response,
)
from database.models import GuildConfiguration, Topic
from utils.constants import (
    BUTTON_TOPIC_LIMIT,
    CUSTOM_ID_DESCRIPTION_INPUT,
    CUSTOM_ID_DETAILS_MODAL,
    CUSTOM_ID_TOPIC_BUTTON_PREFIX,
    CUSTOM_ID_TOPIC_SELECT,
    DEFAULT_TOPIC_EMOJI,
)
from utils.embeds import success_embed, warning_embed

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class PanelStyle(str, Enum):
    BUTTONS = "buttons"
    SELECT = "select"


def choose_panel_style(config: GuildConfiguration, requested: PanelStyle | None = None) -> PanelStyle:
    count = len(config.topics)
    if count == 0:
        raise ValidationError(
            user_message="Add at least one topic with `/ticket-config topic-add` before posting a panel."
        )
    if requested is PanelStyle.BUTTONS and count > BUTTON_TOPIC_LIMIT:
        raise TooManyTopicsForButtonsError()
    if requested is not None:
        return requested
    return PanelStyle.BUTTONS if count <= BUTTON_TOPIC_LIMIT else PanelStyle.SELECT


def _guild_member(interaction: discord.Interaction) -> tuple[discord.Guild, discord.Member]:
    if interaction.guild is None or not isinstance(interaction.user, discord.Member):
        raise ValidationError(user_message="Tickets can only be opened inside a server.")
    return interaction.guild, interaction.user


async def open_details_modal(interaction: discord.Interaction, topic_value: str) -> None:
    """Check the creation preconditions, then ask for the issue description."""
    guild, member = _guild_member(interaction)
    bot = cast("TicketBot", interaction.client)
    *_, topic = await bot.ticket_service.check_can_open(guild, member, topic_value)
    await interaction.response.send_modal(
        TicketDetailsModal(
            topic,
            min_length=bot.config.tickets.description_min_length,
            max_length=bot.config.tickets.description_max_length,
        )
    )


class TicketDetailsModal(discord.ui.Modal):
    def __init__(self, topic: Topic, *, min_length: int = 10, max_length: int = 1000) -> None:
        super().__init__(title=f"{topic.label} Ticket"[:45], timeout=600, custom_id=CUSTOM_ID_DETAILS_MODAL)
        self.topic = topic
        self.description: discord.ui.TextInput[TicketDetailsModal] = discord.ui.TextInput(
            label="Describe your issue",
            placeholder="Tell the support team what you need help with",
            style=discord.TextStyle.long,
            min_length=min_length,
            max_length=max_length,
            required=True,
            custom_id=CUSTOM_ID_DESCRIPTION_INPUT,
        )
        self.add_item(self.description)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        guild, member = _guild_member(interaction)
        bot = cast("TicketBot", interaction.client)
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await bot.ticket_service.create_ticket(
            guild, member, self.topic.value, str(self.description.value).strip()
        )
        await interaction.followup.send(
            embed=success_embed(f"Your ticket has been created: {result.channel.mention}"),
            ephemeral=True,
        )
        for warning in result.warnings:
            await interaction.followup.send(embed=warning_embed(warning), ephemeral=True)

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        log_error(error, "Ticket creation failed. topic=%s", self.topic.value)
        await send_error_response(interaction, humanize_error(error))


class TopicButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=CUSTOM_ID_TOPIC_BUTTON_PREFIX + r"(?P<value>[a-z0-9_]+)",
):
    """One panel button per topic; routes by the topic value in the custom id."""

    def __init__(self, value: str, label: str | None = None, emoji: str | discord.PartialEmoji | None = None) -> None:
        super().__init__(
            discord.ui.Button(
                label=label or value,
                style=discord.ButtonStyle.primary,
                emoji=emoji,
                custom_id=f"{CUSTOM_ID_TOPIC_BUTTON_PREFIX}{value}",
            )
        )
        self.value = value

    @classmethod
    def for_topic(cls, topic: Topic) -> TopicButton:
        return cls(topic.value, label=topic.label[:80], emoji=topic.emoji or DEFAULT_TOPIC_EMOJI)

    @classmethod
    async def from_custom_id(
        cls, interaction: discord.Interaction, item: discord.ui.Button, match: re.Match[str]
    ) -> TopicButton:
        return cls(match.group("value"), label=item.label, emoji=item.emoji)

    async def callback(self, interaction: discord.Interaction) -> None:
        try:
            await open_details_modal(interaction, self.value)
        except Exception as exc:
            log_error(exc, "Topic button failed. topic=%s", self.value)
            await send_error_response(interaction, humanize_error(exc))


class TopicSelect(discord.ui.DynamicItem[discord.ui.Select], template=CUSTOM_ID_TOPIC_SELECT):
    def __init__(self, options: list[discord.SelectOption]) -> None:
        super().__init__(
            discord.ui.Select(
                placeholder="Choose a ticket topic",
                min_values=1,
                max_values=1,
                options=options,
                custom_id=CUSTOM_ID_TOPIC_SELECT,
            )
        )

    @classmethod
    def for_topics(cls, topics: list[Topic]) -> TopicSelect:
        return cls(
            [
                discord.SelectOption(
                    label=topic.label[:100],
                    value=topic.value,
                    description=topic.description[:100] or None,
                    emoji=topic.emoji or DEFAULT_TOPIC_EMOJI,
                )
                for topic in topics
            ]
        )

    @classmethod
    async def from_custom_id(
        cls, interaction: discord.Interaction, item: discord.ui.Select, match: re.Match[str]
    ) -> TopicSelect:
        return cls(list(item.options))

    async def callback(self, interaction: discord.Interaction) -> None:
        values: list[str] = interaction.data.get("values", []) if interaction.data else []  # type: ignore[assignment]
        if not values:
            await send_error_response(interaction, "Please pick a topic.")
            return
        try:
            await open_details_modal(interaction, str(values[0]))
        except Exception as exc:
            log_error(exc, "Topic select failed. topic=%s", values[0])
            await send_error_response(interaction, humanize_error(exc))


def build_panel_view(config: GuildConfiguration, style: PanelStyle) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    if style is PanelStyle.BUTTONS:
        for topic in config.topics:
            view.add_item(TopicButton.for_topic(topic))
    else:
        view.add_item(TopicSelect.for_topics(config.topics))
    return view
