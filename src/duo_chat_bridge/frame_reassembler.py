class FrameReassembler:
    """Joins transport text fragments back into whole logical messages.

    The transport delivers the fragments of one message in order and never
    interleaves them with another message, so one buffer per connection is
    enough.
    """

    def __init__(self) -> None:
        self._pending: list[str] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    def feed(self, fragment: str, is_last: bool) -> str | None:
        self._pending.append(fragment)
        if not is_last:
            return None
        message = "".join(self._pending)
        self._pending.clear()
        return message
