"""ActionCable wire format used on the ``/-/cable`` socket."""

from __future__ import annotations

import json
from typing import Any

DEFAULT_CHANNEL = "AiCompletionChannel"
DEFAULT_HTML_ID = "div-id"

TYPE_WELCOME = "welcome"
TYPE_PING = "ping"
TYPE_CONFIRM_SUBSCRIPTION = "confirm_subscription"
TYPE_REJECT_SUBSCRIPTION = "reject_subscription"
TYPE_DISCONNECT = "disconnect"


def build_identifier(session_id: str, *, channel: str = DEFAULT_CHANNEL, html_id: str = DEFAULT_HTML_ID) -> str:
    return json.dumps(
        {
            "channel": channel,
            "client_subscription_id": session_id,
            "html_id": html_id,
        }
    )


def build_subscribe_command(
    session_id: str,
    *,
    channel: str = DEFAULT_CHANNEL,
    html_id: str = DEFAULT_HTML_ID,
) -> str:
    # The identifier is itself a JSON document embedded as a string.
    return json.dumps(
        {
            "command": "subscribe",
            "identifier": build_identifier(session_id, channel=channel, html_id=html_id),
        }
    )


def parse_identifier(identifier: Any) -> dict[str, Any]:
    """Decode a frame's ``identifier`` field. Returns {} when it is absent or unreadable."""
    if isinstance(identifier, dict):
        return identifier
    if not isinstance(identifier, str) or not identifier:
        return {}
    try:
        parsed = json.loads(identifier)
    except (ValueError, RecursionError):
        return {}
    return parsed if isinstance(parsed, dict) else {}
