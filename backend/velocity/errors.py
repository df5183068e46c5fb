class VelocityError(Exception):
    """Base class for race engine errors."""


class PeerConnectionError(VelocityError, ConnectionError):
    """The peer transport could not establish an identity or a link."""


class ContentFetchError(VelocityError):
    """Sentence retrieval failed; callers fall back to the static corpus."""


class MalformedMessage(VelocityError):
    """An inbound peer frame has no recognised type or a bad shape."""


class SessionStateError(VelocityError):
    """An operation was requested in a state that does not allow it."""
