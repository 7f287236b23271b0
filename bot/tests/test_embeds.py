from __future__ import annotations

import discord

from database.models import TicketRecord
from services.lifecycle import TicketState
from utils.embeds import apply_state_to_embed, control_panel_embed, is_control_panel_embed, make_embed


def _record() -> TicketRecord:
    return TicketRecord(
        id="abc",
        ticket_number=7,
        guild_id=1,
        channel_id=2,
        creator_id=42,
        topic_value="billing",
        topic_label="Billing",
    )


def _field(embed: discord.Embed, name: str) -> str | None:
    for embed_field in embed.fields:
        if embed_field.name == name:
            return embed_field.value
    return None


def test_control_panel_embed_shows_initial_state() -> None:
    embed = control_panel_embed(_record(), "My invoice is wrong")

    assert embed.title == "Ticket #7 | Billing"
    assert is_control_panel_embed(embed)
    assert _field(embed, "Issue") == "My invoice is wrong"
    assert _field(embed, "Claimed By") == "None"
    assert _field(embed, "Status") == "Open"


def test_apply_state_updates_fields_in_place() -> None:
    embed = control_panel_embed(_record(), "Help")
    field_count = len(embed.fields)

    apply_state_to_embed(embed, TicketState(claimed_by_id=99, is_locked=True))

    assert len(embed.fields) == field_count
    assert _field(embed, "Claimed By") == "<@99>"
    assert _field(embed, "Status") == "Locked"


def test_plain_embeds_are_not_control_panels() -> None:
    assert not is_control_panel_embed(make_embed("Hello", "World"))
    assert not is_control_panel_embed(make_embed("Hello", "World", footer="Something else"))
