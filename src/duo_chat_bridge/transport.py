from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


@runtime_checkable
class TransportListener(Protocol):
    def on_open(self) -> None: ...
    def on_text_fragment(self, data: str, is_last: bool) -> None: ...
    def on_close(self) -> None: ...
    def on_error(self, cause: BaseException) -> None: ...


@runtime_checkable
class TransportConnection(Protocol):
    async def send_text(self, text: str) -> None: ...
    async def close(self) -> None: ...


TransportConnect = Callable[[TransportListener], Awaitable[TransportConnection]]


class EventKind(Enum):
    OPEN = "open"
    FRAGMENT = "fragment"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class TransportEvent:
    kind: EventKind
    data: str = ""
    is_last: bool = False
    cause: BaseException | None = None


class QueueingListener:
    """Turns transport callbacks into events on a queue, preserving order."""

    def __init__(self, queue: asyncio.Queue[TransportEvent]):
        self._queue = queue

    def on_open(self) -> None:
        self._queue.put_nowait(TransportEvent(EventKind.OPEN))

    def on_text_fragment(self, data: str, is_last: bool) -> None:
        self._queue.put_nowait(TransportEvent(EventKind.FRAGMENT, data=data, is_last=is_last))

    def on_close(self) -> None:
        self._queue.put_nowait(TransportEvent(EventKind.CLOSE))

    def on_error(self, cause: BaseException) -> None:
        self._queue.put_nowait(TransportEvent(EventKind.ERROR, cause=cause))
