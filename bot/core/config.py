from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


DEFAULT_EXTENSIONS = [
    "cogs.events",
    "cogs.tickets",
    "cogs.admin",
]

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Support tickets"
    activity_type: str = "watching"


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/tickets.db"
    pool_min_size: int = 1
    pool_max_size: int = 5
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class TicketConfig:
    creation_cooldown_seconds: int = 60
    close_delay_seconds: int = 5
    control_panel_scan_limit: int = 25
    description_min_length: int = 10
    description_max_length: int = 1000


@dataclass(slots=True)
class TranscriptConfig:
    tz_info: str = "UTC"
    military_time: bool = True
    save_copies: bool = False
    storage_directory: str = "artifacts/transcripts"


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    transcripts: TranscriptConfig = field(default_factory=TranscriptConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


class _Settings:
    """Reads one value at a time: environment first, then YAML, then the default."""

    def __init__(self, raw: dict[str, Any]) -> None:
        self.raw = raw

    def _lookup(self, section: str, key: str, env: str | None) -> Any:
        if env is not None:
            value = os.getenv(env)
            if value is not None and value.strip():
                return value.strip()
        node = self.raw.get(section)
        if not isinstance(node, dict):
            return None
        return node.get(key)

    def text(self, section: str, key: str, default: str, *, env: str | None = None) -> str:
        value = self._lookup(section, key, env)
        return default if value is None else str(value)

    def optional_text(self, section: str, key: str, *, env: str | None = None) -> str | None:
        value = self._lookup(section, key, env)
        return None if value is None else str(value)

    def integer(self, section: str, key: str, default: int, *, env: str | None = None) -> int:
        value = self._lookup(section, key, env)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{section}.{key} must be an integer, got {value!r}") from exc

    def flag(self, section: str, key: str, default: bool, *, env: str | None = None) -> bool:
        value = self._lookup(section, key, env)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUTHY


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _validate_tickets(tickets: TicketConfig) -> None:
    if tickets.creation_cooldown_seconds < 0 or tickets.close_delay_seconds < 0:
        raise ConfigError("tickets cooldown and close delay must not be negative")
    if tickets.control_panel_scan_limit < 1:
        raise ConfigError("tickets.control_panel_scan_limit must be at least 1")
    if not 1 <= tickets.description_min_length <= tickets.description_max_length <= 4000:
        raise ConfigError(
            "tickets.description_min_length must not exceed description_max_length (range 1-4000)"
        )


def load_config(config_path: Path) -> AppConfig:
    load_dotenv(config_path.parent.parent / ".env")
    settings = _Settings(_load_yaml(config_path))

    token = settings.optional_text("discord", "token", env="DISCORD_TOKEN")
    if not token or "${" in token:
        raise ConfigError("DISCORD_TOKEN is required")
    application_id = settings.optional_text("discord", "application_id", env="DISCORD_APPLICATION_ID")

    discord_cfg = DiscordConfig(
        token=token,
        prefix=settings.text("discord", "prefix", "!", env="BOT_PREFIX"),
        application_id=int(application_id) if application_id else None,
        sync_commands_on_start=settings.flag("discord", "sync_commands_on_start", True, env="SYNC_COMMANDS"),
        status_text=settings.text("discord", "status_text", "Support tickets"),
        activity_type=settings.text("discord", "activity_type", "watching"),
    )
    database_cfg = DatabaseConfig(
        url=settings.text("database", "url", "sqlite:///./data/tickets.db", env="DATABASE_URL"),
        pool_min_size=settings.integer("database", "pool_min_size", 1, env="DB_POOL_MIN"),
        pool_max_size=settings.integer("database", "pool_max_size", 5, env="DB_POOL_MAX"),
        timeout_seconds=settings.integer("database", "timeout_seconds", 30, env="DB_TIMEOUT_SECONDS"),
    )
    redis_cfg = RedisConfig(
        enabled=settings.flag("redis", "enabled", False, env="REDIS_ENABLED"),
        url=settings.text("redis", "url", "redis://localhost:6379/0", env="REDIS_URL"),
    )
    logging_cfg = LoggingConfig(
        level=settings.text("logging", "level", "INFO", env="LOG_LEVEL"),
        directory=settings.text("logging", "directory", "logs"),
        file_name=settings.text("logging", "file_name", "bot.log"),
        max_bytes=settings.integer("logging", "max_bytes", 10_000_000),
        backup_count=settings.integer("logging", "backup_count", 10),
        json_console=settings.flag("logging", "json_console", False),
    )
    ticket_cfg = TicketConfig(
        creation_cooldown_seconds=settings.integer(
            "tickets", "creation_cooldown_seconds", 60, env="TICKET_COOLDOWN_SECONDS"
        ),
        close_delay_seconds=settings.integer("tickets", "close_delay_seconds", 5),
        control_panel_scan_limit=settings.integer("tickets", "control_panel_scan_limit", 25),
        description_min_length=settings.integer("tickets", "description_min_length", 10),
        description_max_length=settings.integer("tickets", "description_max_length", 1000),
    )
    _validate_tickets(ticket_cfg)
    transcript_cfg = TranscriptConfig(
        tz_info=settings.text("transcripts", "tz_info", "UTC"),
        military_time=settings.flag("transcripts", "military_time", True),
        save_copies=settings.flag("transcripts", "save_copies", False),
        storage_directory=settings.text("transcripts", "storage_directory", "artifacts/transcripts"),
    )

    extensions = settings.raw.get("enabled_extensions") or DEFAULT_EXTENSIONS
    return AppConfig(
        discord=discord_cfg,
        database=database_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        tickets=ticket_cfg,
        transcripts=transcript_cfg,
        enabled_extensions=[str(ext) for ext in extensions],
    )
