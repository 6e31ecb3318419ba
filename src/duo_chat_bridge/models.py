from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4


def new_session_id() -> str:
    return str(uuid4())


class SubscriptionState(Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ContentChunk:
    text: str
    chunk_id: int | str | None = None
    role: str | None = None
    is_final: bool = False


@dataclass
class AccumulatedAnswer:
    """Chunks in arrival order. Frozen once the session resolves."""

    chunks: list[ContentChunk] = field(default_factory=list)
    frozen: bool = False

    def append(self, chunk: ContentChunk) -> None:
        if self.frozen:
            raise RuntimeError("Answer is frozen; the session has already resolved")
        self.chunks.append(chunk)

    def freeze(self) -> str:
        self.frozen = True
        return self.text

    @property
    def text(self) -> str:
        return "".join(c.text for c in self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)


@dataclass(frozen=True)
class SessionOutcome:
    pass


@dataclass(frozen=True)
class Completed(SessionOutcome):
    answer: str


@dataclass(frozen=True)
class TimedOut(SessionOutcome):
    answer: str
    phase: str  # "confirmation" or "stream"


@dataclass(frozen=True)
class Rejected(SessionOutcome):
    reason: str


@dataclass(frozen=True)
class TransportError(SessionOutcome):
    cause: BaseException
