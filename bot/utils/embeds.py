from __future__ import annotations

from datetime import UTC, datetime

import discord

from database.models import GuildConfiguration, TicketRecord
from services.lifecycle import TicketState
from utils.constants import CONTROL_PANEL_MARKER

CLAIMED_BY_FIELD = "Claimed By"
STATUS_FIELD = "Status"


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def staff_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, color=discord.Color.gold())


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def warning_embed(message: str) -> discord.Embed:
    return make_embed(title="Warning", description=message, color=discord.Color.orange())


def _claimed_by_text(claimed_by_id: int | None) -> str:
    return f"<@{claimed_by_id}>" if claimed_by_id is not None else "None"


def control_panel_embed(record: TicketRecord, description: str) -> discord.Embed:
    """Welcome message posted at the top of every ticket channel."""
    embed = make_embed(
        title=f"Ticket #{record.ticket_number} | {record.topic_label}",
        description=(
            f"Thanks for reaching out, <@{record.creator_id}>. "
            "A member of the support team will be with you shortly."
        ),
        footer=f"{CONTROL_PANEL_MARKER} | {record.id}",
    )
    embed.add_field(name="Issue", value=description[:1024], inline=False)
    embed.add_field(name="Opened By", value=f"<@{record.creator_id}>", inline=True)
    embed.add_field(name=CLAIMED_BY_FIELD, value=_claimed_by_text(record.claimed_by_id), inline=True)
    embed.add_field(name=STATUS_FIELD, value=TicketState.from_record(record).status.label, inline=True)
    return embed


def is_control_panel_embed(embed: discord.Embed) -> bool:
    footer = embed.footer.text or ""
    return footer.startswith(CONTROL_PANEL_MARKER)


def apply_state_to_embed(embed: discord.Embed, state: TicketState) -> discord.Embed:
    values = {
        CLAIMED_BY_FIELD: _claimed_by_text(state.claimed_by_id),
        STATUS_FIELD: state.status.label,
    }
    seen: set[str] = set()
    for index, embed_field in enumerate(embed.fields):
        if embed_field.name in values:
            embed.set_field_at(
                index, name=embed_field.name, value=values[embed_field.name], inline=embed_field.inline
            )
            seen.add(embed_field.name)
    for name, value in values.items():
        if name not in seen:
            embed.add_field(name=name, value=value, inline=True)
    return embed


def panel_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, footer="Select a topic to open a ticket")


def config_embed(guild: discord.Guild, config: GuildConfiguration) -> discord.Embed:
    def _channel(channel_id: int | None) -> str:
        return f"<#{channel_id}>" if channel_id else "Not set"

    ready = "Ready" if config.is_configured and config.topics else "Incomplete"
    embed = staff_embed(f"Ticket configuration for {guild.name}", f"Status: **{ready}**")
    embed.add_field(name="Category", value=_channel(config.category_id), inline=True)
    embed.add_field(
        name="Support Role",
        value=f"<@&{config.support_role_id}>" if config.support_role_id else "Not set",
        inline=True,
    )
    embed.add_field(name="Logs Channel", value=_channel(config.logs_channel_id), inline=True)
    embed.add_field(name="Topics", value=topic_list_text(config), inline=False)
    return embed


def topic_list_text(config: GuildConfiguration) -> str:
    if not config.topics:
        return "No topics configured. Add one with `/ticket-config topic-add`."
    lines = [
        f"{topic.emoji + ' ' if topic.emoji else ''}**{topic.label}** (`{topic.value}`)"
        + (f" - {topic.description}" if topic.description else "")
        for topic in config.topics
    ]
    return "\n".join(lines)[:1024]


def open_log_embed(record: TicketRecord, channel: discord.abc.GuildChannel) -> discord.Embed:
    embed = make_embed(
        title=f"Ticket Opened (#{record.ticket_number})",
        description=f"{channel.mention} was opened by <@{record.creator_id}>.",
        color=discord.Color.green(),
    )
    embed.add_field(name="Topic", value=record.topic_label, inline=True)
    embed.add_field(name="Creator ID", value=str(record.creator_id), inline=True)
    return embed


def close_log_embed(record: TicketRecord, channel_name: str, closed_by: discord.abc.User) -> discord.Embed:
    embed = make_embed(
        title=f"Ticket Closed (#{record.ticket_number})",
        description=f"Transcript for `#{channel_name}` is attached.",
        color=discord.Color.red(),
    )
    embed.add_field(name="Closed By", value=closed_by.mention, inline=True)
    embed.add_field(name="Opened By", value=f"<@{record.creator_id}>", inline=True)
    embed.add_field(name="Channel", value=channel_name, inline=True)
    embed.add_field(name="Topic", value=record.topic_label, inline=True)
    return embed
