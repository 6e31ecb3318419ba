class DuoChatError(Exception):
    """Base class for errors raised by the chat bridge."""


class IdentityResolutionError(DuoChatError):
    """The resource identity for the prompt could not be resolved."""


class PromptSubmissionError(DuoChatError):
    """The aiAction mutation was refused or failed in transit."""


class MalformedFrameError(DuoChatError):
    """An inbound frame could not be decoded into the expected shape."""


class TransportClosedError(DuoChatError):
    """The socket closed, or the server told us to disconnect, mid-session."""
