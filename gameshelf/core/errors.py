# ===== IMPORTS & DEPENDENCIES =====
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ===== TYPES & INTERFACES =====
class ErrorKind(str, Enum):
    """Categories of failure reported through entity state."""
    REMOTE_FETCH_FAILED = "RemoteFetchFailed"
    REMOTE_WRITE_FAILED = "RemoteWriteFailed"
    AUTH_STATE_FAILED = "AuthStateFailed"
    PROFILE_CREATION_FAILED = "ProfileCreationFailed"


class GameShelfError(Exception):
    """Base class for all errors raised inside gameshelf."""
    kind: ErrorKind = ErrorKind.REMOTE_FETCH_FAILED


class RemoteFetchFailed(GameShelfError):
    kind = ErrorKind.REMOTE_FETCH_FAILED


class RemoteWriteFailed(GameShelfError):
    kind = ErrorKind.REMOTE_WRITE_FAILED


class AuthStateFailed(GameShelfError):
    kind = ErrorKind.AUTH_STATE_FAILED


class ProfileCreationFailed(GameShelfError):
    kind = ErrorKind.PROFILE_CREATION_FAILED


@dataclass(frozen=True)
class ErrorInfo:
    """
    A captured failure, stored in cache entries, session states and mutation results.

    Attributes:
        kind (ErrorKind): The taxonomy bucket of the failure.
        message (str): Human readable description.
        cause (Optional[BaseException]): The original exception, if any.
    """
    kind: ErrorKind
    message: str
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_exception(cls, exc: BaseException, default_kind: ErrorKind = ErrorKind.REMOTE_FETCH_FAILED) -> "ErrorInfo":
        """Builds an ErrorInfo, keeping the kind of gameshelf errors and defaulting the rest."""
        kind = exc.kind if isinstance(exc, GameShelfError) else default_kind
        message = str(exc) or type(exc).__name__
        return cls(kind=kind, message=message, cause=exc)
