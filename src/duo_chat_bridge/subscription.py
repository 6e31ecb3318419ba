from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from loguru import logger

from duo_chat_bridge.cable_protocol import DEFAULT_CHANNEL, DEFAULT_HTML_ID, build_subscribe_command, parse_identifier
from duo_chat_bridge.message_classifier import (
    ClassifiedMessage,
    Heartbeat,
    SubscriptionConfirmed,
    SubscriptionRejected,
    Welcome,
)
from duo_chat_bridge.models import SubscriptionState

_TERMINAL_STATES = (SubscriptionState.CONFIRMED, SubscriptionState.REJECTED)


class ConfirmationGate:
    """Single-fire barrier between the handshake and prompt submission.

    Released once with CONFIRMED or REJECTED and observed by one waiter.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._state: SubscriptionState | None = None
        self._observed = False

    @property
    def released(self) -> bool:
        return self._state is not None

    def release(self, state: SubscriptionState) -> bool:
        if state not in _TERMINAL_STATES:
            raise ValueError(f"Gate can only release with confirmed or rejected, not {state.value}")
        if self._state is not None:
            return False
        self._state = state
        self._event.set()
        return True

    async def wait(self, timeout: float | None = None) -> SubscriptionState | None:
        """Wait for the release. Returns None if ``timeout`` elapses first."""
        if self._observed:
            raise RuntimeError("Confirmation gate has already been waited on")
        self._observed = True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return None
        return self._state


class SubscriptionStateMachine:
    def __init__(
        self,
        session_id: str,
        send_text: Callable[[str], Awaitable[None]],
        *,
        channel: str = DEFAULT_CHANNEL,
        html_id: str = DEFAULT_HTML_ID,
    ) -> None:
        self._session_id = session_id
        self._send_text = send_text
        self._channel = channel
        self._html_id = html_id
        self._state = SubscriptionState.IDLE
        self.gate = ConfirmationGate()
        self.rejection_reason: str | None = None
        self.last_seen_at: float | None = None
        self.heartbeats = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    async def on_open(self) -> None:
        if self._state is not SubscriptionState.IDLE:
            logger.debug(f"Transport open while {self._state.value}; subscribe already sent")
            return
        await self._send_text(
            build_subscribe_command(self._session_id, channel=self._channel, html_id=self._html_id)
        )
        self._state = SubscriptionState.AWAITING_CONFIRMATION
        logger.debug(f"Subscribe sent for {self._channel} (session={self._session_id})")

    def handle(self, message: ClassifiedMessage) -> None:
        if isinstance(message, (Welcome, Heartbeat)):
            self.last_seen_at = time.monotonic()
            if isinstance(message, Heartbeat):
                self.heartbeats += 1
            return

        if isinstance(message, SubscriptionConfirmed):
            if self._addressed_elsewhere(message.identifier):
                return
            self._transition(SubscriptionState.CONFIRMED)
        elif isinstance(message, SubscriptionRejected):
            if self._addressed_elsewhere(message.identifier):
                return
            if self._transition(SubscriptionState.REJECTED):
                self.rejection_reason = message.reason

    def _transition(self, target: SubscriptionState) -> bool:
        if self._state is not SubscriptionState.AWAITING_CONFIRMATION:
            logger.debug(f"Ignoring {target.value} while {self._state.value}")
            return False
        self._state = target
        logger.info(f"Subscription {target.value} (session={self._session_id})")
        self.gate.release(target)
        return True

    def _addressed_elsewhere(self, identifier: object) -> bool:
        subscription_id = parse_identifier(identifier).get("client_subscription_id")
        if subscription_id is None or subscription_id == self._session_id:
            return False
        logger.warning(f"Ignoring handshake reply for another subscription: {subscription_id}")
        return True
