from __future__ import annotations

import logging

from discord.ext import commands

LOGGER = logging.getLogger(__name__)


async def load_extensions(bot: commands.Bot, extension_names: list[str]) -> list[str]:
    """Load each extension, logging failures; returns the names that loaded."""
    loaded: list[str] = []
    for ext in extension_names:
        try:
            await bot.load_extension(ext)
        except commands.ExtensionAlreadyLoaded:
            LOGGER.warning("Extension already loaded: %s", ext)
            continue
        except commands.ExtensionError:
            LOGGER.exception("Failed to load extension: %s", ext)
            continue
        LOGGER.info("Loaded extension: %s", ext)
        loaded.append(ext)
    return loaded
