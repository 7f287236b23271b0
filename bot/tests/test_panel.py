from __future__ import annotations

import pytest

from core.errors import TooManyTopicsForButtonsError, ValidationError
from database.models import GuildConfiguration, Topic
from services.lifecycle import TicketState
from views.ticket_controls import TicketControlsView
from views.ticket_panel import PanelStyle, TopicButton, TopicSelect, build_panel_view, choose_panel_style


def _config(count: int) -> GuildConfiguration:
    return GuildConfiguration(
        guild_id=1,
        category_id=2,
        support_role_id=3,
        topics=[Topic(label=f"Topic {i}", value=f"topic_{i}", description=f"About {i}") for i in range(count)],
    )


def test_style_defaults_follow_topic_count() -> None:
    assert choose_panel_style(_config(5)) is PanelStyle.BUTTONS
    assert choose_panel_style(_config(6)) is PanelStyle.SELECT
    assert choose_panel_style(_config(2), PanelStyle.SELECT) is PanelStyle.SELECT


def test_buttons_rejected_above_limit() -> None:
    with pytest.raises(TooManyTopicsForButtonsError):
        choose_panel_style(_config(6), PanelStyle.BUTTONS)


def test_panel_requires_topics() -> None:
    with pytest.raises(ValidationError):
        choose_panel_style(_config(0))


@pytest.mark.asyncio
async def test_button_panel_has_one_button_per_topic() -> None:
    view = build_panel_view(_config(3), PanelStyle.BUTTONS)

    assert view.timeout is None
    assert all(isinstance(child, TopicButton) for child in view.children)
    assert [child.item.custom_id for child in view.children] == [
        "ticket:open:topic_0",
        "ticket:open:topic_1",
        "ticket:open:topic_2",
    ]
    assert [child.item.label for child in view.children] == ["Topic 0", "Topic 1", "Topic 2"]


@pytest.mark.asyncio
async def test_select_panel_lists_topics_in_order() -> None:
    view = build_panel_view(_config(8), PanelStyle.SELECT)

    assert len(view.children) == 1
    select = view.children[0]
    assert isinstance(select, TopicSelect)
    assert select.item.custom_id == "ticket:open-select"
    assert [option.value for option in select.item.options] == [f"topic_{i}" for i in range(8)]
    assert select.item.options[0].description == "About 0"


@pytest.mark.asyncio
async def test_controls_show_only_relevant_lock_toggle() -> None:
    unlocked = TicketControlsView(state=TicketState())
    custom_ids = [getattr(child, "custom_id", None) for child in unlocked.children]
    assert "ticket:lock" in custom_ids
    assert "ticket:unlock" not in custom_ids
    assert unlocked.claim_button.disabled is False

    locked = TicketControlsView(state=TicketState(claimed_by_id=9, is_locked=True))
    custom_ids = [getattr(child, "custom_id", None) for child in locked.children]
    assert "ticket:unlock" in custom_ids
    assert "ticket:lock" not in custom_ids
    assert locked.claim_button.disabled is True


@pytest.mark.asyncio
async def test_persistent_controls_register_every_button() -> None:
    view = TicketControlsView()
    assert view.is_persistent()
    assert {child.custom_id for child in view.children} == {
        "ticket:claim",
        "ticket:lock",
        "ticket:unlock",
        "ticket:close",
    }
