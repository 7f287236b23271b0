"""Ticket state machine.

Pure functions over an immutable ``TicketState``. Each transition returns a
``Transition`` describing the new state, or raises a ``BotError`` subclass
when the move is not allowed. Discord side effects live in
``services.ticket_service``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from core.errors import AlreadyClaimedByOtherError, TicketStateError
from database.models import TicketRecord


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    LOCKED = "locked"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    TicketStatus.OPEN: "Open",
    TicketStatus.IN_PROGRESS: "In Progress",
    TicketStatus.LOCKED: "Locked",
    TicketStatus.CLOSING: "Closing",
    TicketStatus.CLOSED: "Closed",
}


@dataclass(slots=True, frozen=True)
class TicketState:
    claimed_by_id: int | None = None
    is_locked: bool = False
    is_closing: bool = False
    is_closed: bool = False

    @property
    def status(self) -> TicketStatus:
        if self.is_closed:
            return TicketStatus.CLOSED
        if self.is_closing:
            return TicketStatus.CLOSING
        if self.is_locked:
            return TicketStatus.LOCKED
        if self.claimed_by_id is not None:
            return TicketStatus.IN_PROGRESS
        return TicketStatus.OPEN

    @classmethod
    def from_record(cls, record: TicketRecord) -> TicketState:
        return cls(
            claimed_by_id=record.claimed_by_id,
            is_locked=record.is_locked,
            is_closing=record.is_closing,
            is_closed=record.is_closed,
        )

    def apply_to(self, record: TicketRecord) -> None:
        record.claimed_by_id = self.claimed_by_id
        record.is_locked = self.is_locked
        record.is_closing = self.is_closing
        record.status = self.status.value


@dataclass(slots=True, frozen=True)
class Transition:
    state: TicketState
    changed: bool
    notice: str | None = None


def _unchanged(state: TicketState, notice: str) -> Transition:
    return Transition(state=state, changed=False, notice=notice)


def ensure_mutable(state: TicketState) -> None:
    if state.is_closed:
        raise TicketStateError(user_message="This ticket is already closed.")


def claim(state: TicketState, actor_id: int, *, force: bool = False) -> Transition:
    ensure_mutable(state)
    if state.claimed_by_id == actor_id:
        return _unchanged(state, "You have already claimed this ticket.")
    if state.claimed_by_id is not None and not force:
        raise AlreadyClaimedByOtherError(claimed_by_id=state.claimed_by_id)
    return Transition(state=replace(state, claimed_by_id=actor_id), changed=True)


def unclaim(state: TicketState) -> Transition:
    ensure_mutable(state)
    if state.claimed_by_id is None:
        raise TicketStateError(user_message="This ticket is not claimed.")
    return Transition(state=replace(state, claimed_by_id=None), changed=True)


def lock(state: TicketState) -> Transition:
    ensure_mutable(state)
    if state.is_locked:
        return _unchanged(state, "This ticket is already locked.")
    return Transition(state=replace(state, is_locked=True), changed=True)


def unlock(state: TicketState) -> Transition:
    ensure_mutable(state)
    if not state.is_locked:
        return _unchanged(state, "This ticket is not locked.")
    return Transition(state=replace(state, is_locked=False), changed=True)


def request_close(state: TicketState) -> Transition:
    ensure_mutable(state)
    if state.is_closing:
        return _unchanged(state, "A close request is already pending for this ticket.")
    return Transition(state=replace(state, is_closing=True), changed=True)


def cancel_close(state: TicketState) -> Transition:
    ensure_mutable(state)
    if not state.is_closing:
        return _unchanged(state, "There is no pending close request.")
    return Transition(state=replace(state, is_closing=False), changed=True)


def close(state: TicketState) -> Transition:
    ensure_mutable(state)
    if not state.is_closing:
        raise TicketStateError(user_message="Confirm the close request before closing the ticket.")
    return Transition(state=replace(state, is_closing=False, is_closed=True), changed=True)
