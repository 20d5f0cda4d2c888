class ModerationError(Exception):
    """Base class for moderation failures"""


class TransactionNotFoundError(ModerationError, LookupError):
    """A provider called back with a handle we never submitted"""

    def __init__(self, handle: str):
        super().__init__(f"No moderation transaction for handle {handle}")
        self.handle = handle


class VerdictParseError(ModerationError, ValueError):
    """The provider response could not be turned into a severity"""


class UnknownTargetError(ModerationError):
    """A moderation record does not resolve to any known target kind"""


class InvalidCallbackError(ModerationError, ValueError):
    """Callback or image address the provider cannot reach"""


def require(value, name: str):
    """Reject blank caller-supplied identifiers"""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{name} is required")
    return value
