from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from duo_chat_bridge.cable_protocol import DEFAULT_CHANNEL, DEFAULT_HTML_ID
from duo_chat_bridge.content_extractor import TerminationPolicy, extract
from duo_chat_bridge.errors import IdentityResolutionError, PromptSubmissionError, TransportClosedError
from duo_chat_bridge.frame_reassembler import FrameReassembler
from duo_chat_bridge.graphql_client import GraphQLResponse, build_chat_mutation
from duo_chat_bridge.message_classifier import DataPayload, Disconnect, Ignored, classify
from duo_chat_bridge.models import (
    AccumulatedAnswer,
    Completed,
    ContentChunk,
    Rejected,
    SessionOutcome,
    SubscriptionState,
    TimedOut,
    TransportError,
    new_session_id,
)
from duo_chat_bridge.subscription import SubscriptionStateMachine
from duo_chat_bridge.transport import (
    EventKind,
    QueueingListener,
    TransportConnect,
    TransportConnection,
    TransportEvent,
)

IdentityLookup = Callable[[], Awaitable[str]]
HttpSend = Callable[[dict[str, Any]], Awaitable[GraphQLResponse]]


class ChatSession:
    """One prompt, one subscription, one streamed answer.

    The prompt is only submitted after the server confirms the socket
    subscription; the answer is whatever the socket streams back until a
    terminal chunk or the idle timeout.
    """

    def __init__(
        self,
        *,
        identity_lookup: IdentityLookup,
        http_send: HttpSend,
        transport_connect: TransportConnect,
        confirmation_timeout: float,
        stream_timeout: float,
        policy: TerminationPolicy | None = None,
        on_chunk: Callable[[str], None] | None = None,
        channel: str = DEFAULT_CHANNEL,
        html_id: str = DEFAULT_HTML_ID,
        session_id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        self._identity_lookup = identity_lookup
        self._http_send = http_send
        self._transport_connect = transport_connect
        self._confirmation_timeout = confirmation_timeout
        self._stream_timeout = stream_timeout
        self._policy = policy or TerminationPolicy()
        self._on_chunk = on_chunk
        self._channel = channel
        self._html_id = html_id
        self._session_id_factory = session_id_factory

        self._reassembler = FrameReassembler()
        self._answer = AccumulatedAnswer()
        self._outcome: asyncio.Future[SessionOutcome] | None = None
        self._idle_timer: asyncio.TimerHandle | None = None
        self._machine: SubscriptionStateMachine | None = None
        self.session_id: str | None = None

    async def run(self, prompt: str) -> SessionOutcome:
        if self._outcome is not None:
            raise RuntimeError("A ChatSession runs exactly once")
        self._outcome = asyncio.get_running_loop().create_future()

        try:
            resource_id = (await self._identity_lookup()).strip()
            if not resource_id:
                raise IdentityResolutionError("Identity lookup returned an empty resource id")
        except Exception as ex:
            logger.error(f"Identity resolution failed: {ex}")
            cause = ex if isinstance(ex, IdentityResolutionError) else IdentityResolutionError(str(ex))
            return TransportError(cause=cause)

        self.session_id = self._session_id_factory()
        # Tasks and timers created inside inherit the session tag.
        with logger.contextualize(session=self.session_id):
            logger.info(f"Starting chat session for {resource_id}")
            return await self._run_connected(prompt, resource_id)

    async def _run_connected(self, prompt: str, resource_id: str) -> SessionOutcome:
        assert self.session_id is not None
        queue: asyncio.Queue[TransportEvent] = asyncio.Queue()
        try:
            connection = await self._transport_connect(QueueingListener(queue))
        except Exception as ex:
            logger.error(f"Could not open socket: {ex}")
            return TransportError(cause=ex)

        self._machine = SubscriptionStateMachine(
            self.session_id,
            connection.send_text,
            channel=self._channel,
            html_id=self._html_id,
        )
        pump = asyncio.create_task(self._pump(queue))
        try:
            return await self._converse(prompt, resource_id)
        finally:
            self._cancel_idle_timer()
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
            await self._close(connection)

    async def _converse(self, prompt: str, resource_id: str) -> SessionOutcome:
        assert self._machine is not None and self._outcome is not None
        gate_wait = asyncio.ensure_future(self._machine.gate.wait())
        done, _ = await asyncio.wait(
            {gate_wait, self._outcome},
            timeout=self._confirmation_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if gate_wait not in done:
            gate_wait.cancel()
            if self._outcome.done():
                return self._outcome.result()
            logger.warning(f"No subscription confirmation within {self._confirmation_timeout}s")
            return self._finish(lambda answer: TimedOut(answer=answer, phase="confirmation"))

        if gate_wait.result() is SubscriptionState.REJECTED:
            reason = self._machine.rejection_reason or "subscription rejected"
            logger.error(f"Subscription rejected: {reason}")
            return self._finish(lambda _: Rejected(reason=reason))
        if self._outcome.done():
            return self._outcome.result()

        # The idle timer also bounds a submission that never returns.
        self._arm_idle_timer()
        submit = asyncio.ensure_future(
            self._submit_prompt(build_chat_mutation(resource_id, prompt, self.session_id or ""))
        )
        await asyncio.wait({submit, self._outcome}, return_when=asyncio.FIRST_COMPLETED)
        if not submit.done():
            logger.warning("Session ended while the prompt submission was still in flight")
            submit.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await submit
            return self._outcome.result()

        self._arm_idle_timer()
        return await self._outcome

    async def _submit_prompt(self, body: dict[str, Any]) -> None:
        # Errors here are reported only: the server may already be generating the answer.
        try:
            response = await self._http_send(body)
            errors = response.errors()
            if errors:
                raise PromptSubmissionError(f"server reported {errors}")
        except Exception as ex:
            logger.error(f"Prompt submission failed: {ex}; still listening for the answer")
            return
        logger.info("Prompt accepted, waiting for streamed answer")

    async def _pump(self, queue: asyncio.Queue[TransportEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception(f"Dropping {event.kind.value} event that could not be handled")

    async def _dispatch(self, event: TransportEvent) -> None:
        assert self._machine is not None
        if event.kind is EventKind.OPEN:
            try:
                await self._machine.on_open()
            except Exception as ex:
                logger.error(f"Could not send subscribe command: {ex}")
                self._finish(lambda _: TransportError(cause=ex))
        elif event.kind is EventKind.FRAGMENT:
            message = self._reassembler.feed(event.data, event.is_last)
            if message is not None:
                self._on_message(message)
        elif event.kind is EventKind.CLOSE:
            self._finish(lambda _: TransportError(cause=TransportClosedError("Socket closed by server")))
        else:
            logger.error(f"Transport error: {event.cause}")
            cause = event.cause or TransportClosedError("Unknown transport error")
            self._finish(lambda _: TransportError(cause=cause))

    def _on_message(self, message: str) -> None:
        assert self._machine is not None
        logger.debug(f"ws< {message}")
        classified = classify(message)
        if isinstance(classified, DataPayload):
            self._on_payload(classified)
        elif isinstance(classified, Disconnect):
            logger.error(f"Server requested disconnect: {classified.reason}")
            cause = TransportClosedError(f"Server disconnected: {classified.reason}")
            self._finish(lambda _: TransportError(cause=cause))
        elif isinstance(classified, Ignored):
            logger.warning(f"Dropping frame: {classified.reason}")
        else:
            self._machine.handle(classified)

    def _on_payload(self, payload: DataPayload) -> None:
        assert self._machine is not None and self._outcome is not None
        if self._machine.state is not SubscriptionState.CONFIRMED:
            logger.warning(f"Discarding payload received while {self._machine.state.value}")
            return
        if self._outcome.done():
            logger.debug("Discarding payload received after the session resolved")
            return

        chunk = extract(payload.raw_payload, self._policy)
        if chunk is None:
            return
        self._arm_idle_timer()

        is_final = chunk.is_final
        if self._is_full_message(chunk):
            logger.debug("Full message after streamed chunks; not appending")
            # An exact restatement of the streamed answer closes the stream.
            is_final = is_final or chunk.text == self._answer.text
        elif chunk.text:
            self._answer.append(chunk)
            self._emit(chunk.text)

        if is_final:
            logger.info(f"Answer complete ({len(self._answer)} chunks)")
            self._finish(lambda answer: Completed(answer=answer))

    def _is_full_message(self, chunk: ContentChunk) -> bool:
        return chunk.chunk_id is None and chunk.role is not None and len(self._answer) > 0

    def _emit(self, text: str) -> None:
        if self._on_chunk is None:
            return
        try:
            self._on_chunk(text)
        except Exception:
            logger.exception("Chunk callback failed")

    def _arm_idle_timer(self) -> None:
        assert self._outcome is not None
        self._cancel_idle_timer()
        if self._outcome.done():
            return
        self._idle_timer = asyncio.get_running_loop().call_later(self._stream_timeout, self._on_stream_idle)

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _on_stream_idle(self) -> None:
        self._idle_timer = None
        logger.warning(f"No answer chunk for {self._stream_timeout}s; ending with partial answer")
        self._finish(lambda answer: TimedOut(answer=answer, phase="stream"))

    def _finish(self, make_outcome: Callable[[str], SessionOutcome]) -> SessionOutcome:
        """Resolve the session once; later calls return the first outcome."""
        assert self._outcome is not None
        if not self._outcome.done():
            self._cancel_idle_timer()
            self._outcome.set_result(make_outcome(self._answer.freeze()))
        return self._outcome.result()

    async def _close(self, connection: TransportConnection) -> None:
        try:
            await connection.close()
        except Exception as ex:
            logger.warning(f"Error while closing socket: {ex}")


async def run_session(
    prompt: str,
    identity_lookup: IdentityLookup,
    http_send: HttpSend,
    transport_connect: TransportConnect,
    confirmation_timeout: float,
    stream_timeout: float,
    **options: Any,
) -> SessionOutcome:
    session = ChatSession(
        identity_lookup=identity_lookup,
        http_send=http_send,
        transport_connect=transport_connect,
        confirmation_timeout=confirmation_timeout,
        stream_timeout=stream_timeout,
        **options,
    )
    return await session.run(prompt)
