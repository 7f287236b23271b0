from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import discord
from discord import app_commands
from discord.ext import commands

from utils.constants import BUTTON_TOPIC_LIMIT, MAX_TOPICS

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class TicketStateError(BotError):
    user_message: str = "The ticket is not in a valid state for this action."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class NotConfiguredError(ValidationError):
    user_message: str = (
        "The ticketing system is not fully configured for this server. "
        "Run `/ticket-config set` to choose a category and support role first."
    )


@dataclass(slots=True)
class UnknownTopicError(ValidationError):
    user_message: str = "That ticket topic no longer exists. Please pick another topic."


@dataclass(slots=True)
class InvalidTopicKeyError(ValidationError):
    user_message: str = "Topic values may only contain letters, digits, and underscores."


@dataclass(slots=True)
class DuplicateTopicKeyError(ValidationError):
    value: str = ""
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = f"A topic with the unique value `{self.value}` already exists."


@dataclass(slots=True)
class TopicNotFoundError(ValidationError):
    value: str = ""
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = f"Topic with value `{self.value}` not found."


@dataclass(slots=True)
class TopicLimitExceededError(ValidationError):
    user_message: str = f"A ticket panel can hold at most {MAX_TOPICS} topics. Remove one first."


@dataclass(slots=True)
class TooManyTopicsForButtonsError(ValidationError):
    user_message: str = (
        f"The button style supports at most {BUTTON_TOPIC_LIMIT} topics. "
        "Use the select menu style or remove some topics."
    )


@dataclass(slots=True)
class DuplicateTicketError(ValidationError):
    channel_id: int = 0
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = (
                f"You already have an open ticket: <#{self.channel_id}>. "
                "Please close it before opening a new one."
            )


@dataclass(slots=True)
class CooldownActiveError(ValidationError):
    remaining_seconds: float = 0.0
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            wait = max(1, math.ceil(self.remaining_seconds))
            self.user_message = f"Please wait {wait} more seconds before opening another ticket."


@dataclass(slots=True)
class InvalidNameError(ValidationError):
    user_message: str = "The new name must be between 2 and 100 characters after cleanup."


@dataclass(slots=True)
class AlreadyClaimedByOtherError(TicketStateError):
    claimed_by_id: int = 0
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = (
                f"This ticket is already claimed by <@{self.claimed_by_id}>. "
                "Use `/ticket claim force:true` to take it over."
            )


@dataclass(slots=True)
class NotATicketChannelError(BotError):
    user_message: str = "This command must be used inside a ticket channel."


@dataclass(slots=True)
class ControlPanelNotFoundError(BotError):
    user_message: str = (
        "The ticket status message could not be found, so the status display was not updated."
    )


@dataclass(slots=True)
class MissingPermissionError(BotError):
    capability: str = ""
    target: str = ""
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = (
                f"I am missing the `{self.capability}` permission in **{self.target}**. "
                "Grant it and try again."
            )


@dataclass(slots=True)
class ExternalCallError(BotError):
    action: str = "complete the request"
    user_message: str = ""

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = f"Discord rejected the request to {self.action}. Please try again."


@contextmanager
def discord_call(capability: str, target: str, action: str | None = None) -> Iterator[None]:
    """Translate Discord HTTP failures inside the block into bot errors."""
    try:
        yield
    except discord.Forbidden as exc:
        raise MissingPermissionError(capability=capability, target=target) from exc
    except discord.HTTPException as exc:
        raise ExternalCallError(action=action or f"use {capability} in {target}") from exc


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False, ephemeral=True)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def unwrap_error(error: BaseException) -> BaseException:
    while isinstance(
        error,
        (commands.HybridCommandError, commands.CommandInvokeError, app_commands.CommandInvokeError),
    ):
        error = error.original
    return error


def humanize_error(error: BaseException) -> str:
    error = unwrap_error(error)
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, (commands.MissingPermissions, app_commands.MissingPermissions)):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
        return "Command argument was invalid."
    return "An unexpected error occurred."


def log_error(error: BaseException, message: str, *args: object) -> None:
    original = unwrap_error(error)
    if isinstance(original, BotError):
        LOGGER.info(message + " reason=%s", *args, type(original).__name__)
        return
    LOGGER.exception(message, *args, exc_info=original)


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    if isinstance(error, commands.CommandNotFound):
        return
    log_error(
        error,
        "Command failed. command=%s guild=%s user=%s",
        getattr(ctx.command, "qualified_name", None),
        getattr(ctx.guild, "id", None),
        ctx.author.id,
    )
    await send_error_response(ctx, humanize_error(error))


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    log_error(
        error,
        "Slash command failed. command=%s guild=%s user=%s",
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
    )
    await send_error_response(interaction, humanize_error(error))
