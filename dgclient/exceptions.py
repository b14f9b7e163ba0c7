"""
dgclient exceptions.
"""

from enum import Enum


class StatusCode(str, Enum):
    """Status classes a transport reports failures with."""

    UNKNOWN = "unknown"
    INVALID_ARGUMENT = "invalid_argument"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    ABORTED = "aborted"
    UNAVAILABLE = "unavailable"
    UNAUTHENTICATED = "unauthenticated"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"


class DgraphError(Exception):
    """Base exception for all dgclient errors."""
    pass


class ConfigurationError(DgraphError):
    """Invalid connection string or client configuration."""
    pass


class TransportError(DgraphError):
    """
    A remote call failed.

    Raised verbatim by transports; the core never interprets it except to
    recognise an expired access token or a server-side abort.
    """

    def __init__(self, message: str, code: StatusCode = StatusCode.UNKNOWN):
        self.message = message
        self.code = code
        super().__init__(message)

    def __repr__(self):
        return f"TransportError(code={self.code.value!r}, message={self.message!r})"


class AuthenticationError(DgraphError):
    """Authentication failed."""
    pass


class AuthenticationExpiredError(AuthenticationError):
    """Access token still expired after one refresh-and-retry cycle."""
    pass


class EmptyRefreshTokenError(AuthenticationError):
    """Refresh requested but no refresh token is held."""

    def __init__(self, message: str = "refresh jwt should not be empty"):
        super().__init__(message)


class TransactionError(DgraphError):
    """Transaction operation failed."""
    pass


class TransactionFinishedError(TransactionError):
    """Operation attempted on a committed, aborted or discarded transaction."""

    def __init__(self, message: str = "Transaction has already been committed or discarded"):
        super().__init__(message)


class ReadOnlyError(TransactionError):
    """Mutation or commit attempted on a read-only transaction."""

    def __init__(self, message: str = "Readonly transaction cannot run mutations or be committed"):
        super().__init__(message)


class TransactionAbortedError(TransactionError):
    """Server detected a conflict; replay the whole transaction to retry."""

    def __init__(self, message: str = "Transaction has been aborted. Please retry"):
        super().__init__(message)


class StartTsMismatchError(TransactionError):
    """Server replied with a start timestamp different from the one held."""
    pass
