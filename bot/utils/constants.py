from __future__ import annotations

MAX_TOPICS = 25
BUTTON_TOPIC_LIMIT = 5

TICKET_CHANNEL_PREFIX = "ticket-"
CHANNEL_NAME_MIN_LENGTH = 2
CHANNEL_NAME_MAX_LENGTH = 100

DEFAULT_PANEL_TITLE = "Support Tickets"
DEFAULT_PANEL_DESCRIPTION = "Need help? Choose a topic below to open a private ticket with our support team."
DEFAULT_TOPIC_EMOJI = "\N{ADMISSION TICKETS}"

# Footer text identifying the bot's status message inside a ticket channel.
CONTROL_PANEL_MARKER = "Ticket Control Panel"

CUSTOM_ID_TOPIC_BUTTON_PREFIX = "ticket:open:"
CUSTOM_ID_TOPIC_SELECT = "ticket:open-select"
CUSTOM_ID_CLAIM = "ticket:claim"
CUSTOM_ID_LOCK = "ticket:lock"
CUSTOM_ID_UNLOCK = "ticket:unlock"
CUSTOM_ID_CLOSE = "ticket:close"
CUSTOM_ID_DETAILS_MODAL = "ticket:details"
CUSTOM_ID_DESCRIPTION_INPUT = "issue_description"

CONFIRM_TIMEOUT_SECONDS = 120
