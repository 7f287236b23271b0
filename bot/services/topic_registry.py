from __future__ import annotations

import re

from core.errors import (
    DuplicateTopicKeyError,
    InvalidTopicKeyError,
    TopicLimitExceededError,
    TopicNotFoundError,
    ValidationError,
)
from database.models import GuildConfiguration, Topic
from utils.constants import MAX_TOPICS

_INVALID_KEY_CHARS = re.compile(r"[^a-z0-9_]+")


def sanitize_topic_key(raw: str) -> str:
    key = _INVALID_KEY_CHARS.sub("", raw.lower())
    if not key:
        raise InvalidTopicKeyError()
    return key


def find_topic(config: GuildConfiguration, value: str) -> Topic | None:
    for topic in config.topics:
        if topic.value == value:
            return topic
    return None


def add_topic(config: GuildConfiguration, topic: Topic) -> Topic:
    """Append ``topic`` to ``config.topics`` in place."""
    if find_topic(config, topic.value) is not None:
        raise DuplicateTopicKeyError(value=topic.value)
    if len(config.topics) >= MAX_TOPICS:
        raise TopicLimitExceededError()
    config.topics.append(topic)
    return topic


def remove_topic(config: GuildConfiguration, value: str) -> Topic:
    for index, topic in enumerate(config.topics):
        if topic.value == value:
            return config.topics.pop(index)
    raise TopicNotFoundError(value=value)


def build_topic(label: str, value: str, description: str, emoji: str | None = None) -> Topic:
    """Validate operator input for a new topic; ``value`` is sanitized."""
    label = label.strip()
    description = description.strip()
    if not 1 <= len(label) <= 80:
        raise ValidationError(user_message="Topic labels must be between 1 and 80 characters.")
    if len(description) > 100:
        raise ValidationError(user_message="Topic descriptions must be at most 100 characters.")
    return Topic(
        label=label,
        value=sanitize_topic_key(value),
        description=description,
        emoji=(emoji or "").strip() or None,
    )
