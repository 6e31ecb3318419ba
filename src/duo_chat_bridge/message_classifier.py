from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from duo_chat_bridge.cable_protocol import (
    TYPE_CONFIRM_SUBSCRIPTION,
    TYPE_DISCONNECT,
    TYPE_PING,
    TYPE_REJECT_SUBSCRIPTION,
    TYPE_WELCOME,
)


@dataclass(frozen=True)
class ClassifiedMessage:
    pass


@dataclass(frozen=True)
class Welcome(ClassifiedMessage):
    pass


@dataclass(frozen=True)
class Heartbeat(ClassifiedMessage):
    pass


@dataclass(frozen=True)
class SubscriptionConfirmed(ClassifiedMessage):
    identifier: Any = None


@dataclass(frozen=True)
class SubscriptionRejected(ClassifiedMessage):
    reason: str
    identifier: Any = None


@dataclass(frozen=True)
class Disconnect(ClassifiedMessage):
    reason: str
    reconnect: bool = False


@dataclass(frozen=True)
class DataPayload(ClassifiedMessage):
    raw_payload: Any
    identifier: Any = None


@dataclass(frozen=True)
class Ignored(ClassifiedMessage):
    reason: str


def classify(message: str) -> ClassifiedMessage:
    """Tag a reassembled socket message with its protocol role.

    Control markers always win over payload content, even if a server were to
    send both in one frame.
    """
    try:
        frame = json.loads(message)
    except (ValueError, TypeError, RecursionError) as ex:
        return Ignored(reason=f"not JSON: {type(ex).__name__}")
    if not isinstance(frame, dict):
        return Ignored(reason=f"expected a JSON object, got {type(frame).__name__}")

    frame_type = frame.get("type")
    identifier = frame.get("identifier")

    if frame_type == TYPE_CONFIRM_SUBSCRIPTION:
        return SubscriptionConfirmed(identifier=identifier)
    if frame_type == TYPE_REJECT_SUBSCRIPTION:
        reason = str(frame.get("reason") or "subscription rejected by server")
        return SubscriptionRejected(reason=reason, identifier=identifier)
    if frame_type == TYPE_WELCOME:
        return Welcome()
    if frame_type == TYPE_PING:
        return Heartbeat()
    if frame_type == TYPE_DISCONNECT:
        return Disconnect(
            reason=str(frame.get("reason") or "unspecified"),
            reconnect=bool(frame.get("reconnect", False)),
        )

    if "message" in frame:
        return DataPayload(raw_payload=frame["message"], identifier=identifier)

    if frame_type is not None:
        return Ignored(reason=f"unknown frame type {frame_type!r}")
    return Ignored(reason="frame has neither a type nor a message")
