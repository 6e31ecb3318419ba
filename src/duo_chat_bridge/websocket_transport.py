from __future__ import annotations

import asyncio
import contextlib

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from duo_chat_bridge.transport import TransportListener


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = f"{type(exc).__name__}: {exc}" if exc else "Unknown"
    logger.warning(f"Socket connect failed ({reason}). Retrying in {wait:.0f}s (attempt {attempt})...")


def connect_retry_kwargs(attempts: int) -> dict:
    # Handshake rejections (bad token, 404) are not network blips; only retry the latter.
    return {
        "retry": retry_if_exception_type((OSError, TimeoutError)),
        "wait": wait_exponential(multiplier=1, min=1, max=8),
        "stop": stop_after_attempt(max(1, attempts)),
        "before_sleep": _on_retry,
        "reraise": True,
    }


class WebSocketConnection:
    def __init__(self, ws: ClientConnection, listener: TransportListener):
        self._ws = ws
        self._listener = listener
        self._reader: asyncio.Task | None = None
        self._closed = False

    def start(self) -> None:
        self._listener.on_open()
        self._reader = asyncio.create_task(self._read_loop())

    async def send_text(self, text: str) -> None:
        logger.debug(f"ws> {text}")
        await self._ws.send(text)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        await self._ws.close()

    async def _read_loop(self) -> None:
        try:
            while True:
                # Hold one fragment back so the last one of each message can be flagged.
                held: str | None = None
                async for fragment in self._ws.recv_streaming(decode=True):
                    if held is not None:
                        self._listener.on_text_fragment(held, False)
                    held = fragment
                self._listener.on_text_fragment(held if held is not None else "", True)
        except ConnectionClosedOK:
            logger.debug("Socket closed by peer")
            self._listener.on_close()
        except ConnectionClosed as ex:
            logger.warning(f"Socket closed abnormally: {ex}")
            self._listener.on_error(ex)
        except Exception as ex:
            logger.error(f"Socket reader failed: {ex}")
            self._listener.on_error(ex)


class WebSocketTransport:
    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        origin: str | None = None,
        open_timeout: float = 10.0,
        connect_attempts: int = 3,
    ):
        self._url = url
        self._headers = headers or {}
        self._origin = origin
        self._open_timeout = open_timeout
        self._connect_attempts = connect_attempts

    async def connect(self, listener: TransportListener) -> WebSocketConnection:
        open_socket = retry(**connect_retry_kwargs(self._connect_attempts))(self._open)
        ws = await open_socket()
        connection = WebSocketConnection(ws, listener)
        connection.start()
        return connection

    async def _open(self) -> ClientConnection:
        logger.debug(f"Connecting to {self._url}")
        return await connect(
            self._url,
            additional_headers=self._headers,
            origin=self._origin,
            open_timeout=self._open_timeout,
        )
