from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path

import chat_exporter
import discord
from discord.ext import commands

from core.config import TranscriptConfig
from core.errors import ExternalCallError, discord_call

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptArtifact:
    filename: str
    html: str
    path: Path | None = None

    def to_file(self) -> discord.File:
        # A fresh buffer per upload; discord.File consumes its stream.
        return discord.File(io.BytesIO(self.html.encode("utf-8")), filename=self.filename)


class TranscriptService:
    """Renders a channel's full message history to HTML with chat-exporter."""

    def __init__(self, config: TranscriptConfig, bot: commands.Bot | None = None) -> None:
        self.config = config
        self.bot = bot
        self.base_dir = Path(config.storage_directory)

    async def generate(self, channel: discord.TextChannel) -> TranscriptArtifact:
        with discord_call("Read Message History", f"#{channel.name}", action="read the ticket history"):
            try:
                html = await chat_exporter.export(
                    channel=channel,
                    limit=None,
                    tz_info=self.config.tz_info,
                    guild=channel.guild,
                    bot=self.bot,
                    military_time=self.config.military_time,
                    fancy_times=True,
                    support_dev=False,
                )
            except discord.HTTPException:
                raise
            except Exception as exc:
                raise ExternalCallError(action="generate the transcript") from exc
        if not html:
            raise ExternalCallError(action="generate the transcript")

        artifact = TranscriptArtifact(filename=f"transcript-{channel.name}.html", html=html)
        if self.config.save_copies:
            artifact.path = self._save_copy(channel, artifact)
        LOGGER.info(
            "Transcript generated for #%s (%d bytes)",
            channel.name,
            len(html),
            extra={"guild_id": channel.guild.id, "channel_id": channel.id},
        )
        return artifact

    def _save_copy(self, channel: discord.TextChannel, artifact: TranscriptArtifact) -> Path:
        guild_dir = self.base_dir / str(channel.guild.id)
        guild_dir.mkdir(parents=True, exist_ok=True)
        path = guild_dir / f"{channel.id}-{artifact.filename}"
        path.write_text(artifact.html, encoding="utf-8")
        return path
