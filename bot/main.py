from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from core.bot import TicketBot
from core.config import AppConfig, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger(__name__)


async def _run_bot(config: AppConfig) -> None:
    bot = TicketBot(config=config)
    async with bot:
        await bot.start(config.discord.token)


def main() -> None:
    root = Path(__file__).resolve().parent
    config = load_config(root / "config" / "config.yaml")
    configure_logging(config.logging)
    LOGGER.info("Starting ticket bot with extensions: %s", ", ".join(config.enabled_extensions))
    asyncio.run(_run_bot(config))


if __name__ == "__main__":
    main()
