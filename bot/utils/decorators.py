from __future__ import annotations

import discord
from discord.ext import commands

from core.errors import PermissionDeniedError


def can_manage_tickets(member: discord.Member) -> bool:
    perms = member.guild_permissions
    return perms.administrator or perms.manage_guild or perms.manage_channels


def ensure_config_admin(ctx: commands.Context[commands.Bot]) -> bool:
    """Check shared by every ticket configuration command, prefix or slash."""
    if ctx.guild is None or not isinstance(ctx.author, discord.Member):
        raise commands.NoPrivateMessage()
    if can_manage_tickets(ctx.author):
        return True
    raise PermissionDeniedError(
        user_message="You need the Manage Channels or Administrator permission to configure tickets."
    )
