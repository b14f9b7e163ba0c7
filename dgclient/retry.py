"""
Retry policies.

``call_with_retry_login`` is applied to every authenticated call and absorbs
exactly one expired access token. ``retry_with_exponential_backoff`` is an
opt-in helper for callers; the library never uses it on its own.
"""

import logging
import time
from typing import Callable, Optional, TypeVar, TYPE_CHECKING

from .exceptions import AuthenticationExpiredError, StatusCode, TransportError

if TYPE_CHECKING:
    from .session import CredentialSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_EXPIRED_MARKER = "Token is expired"

MAX_ATTEMPTS = 5
INITIAL_BACKOFF = 0.1


def is_jwt_expired(err: Optional[BaseException]) -> bool:
    """True only for an unauthenticated failure caused by an expired token."""
    return (isinstance(err, TransportError)
            and err.code == StatusCode.UNAUTHENTICATED
            and TOKEN_EXPIRED_MARKER in str(err))


def call_with_retry_login(
    session: "CredentialSession",
    fn: Callable[[], T],
    timeout: Optional[float] = None
) -> T:
    """
    Call ``fn``; on an expired token refresh once and call it again.

    ``fn`` must read the session's metadata itself so the retry carries the
    new token.

    Raises:
        AuthenticationExpiredError: If the retried call is rejected as expired too
    """
    try:
        return fn()
    except TransportError as e:
        if not is_jwt_expired(e):
            raise
        logger.info("Access token expired, refreshing and retrying once")

    session.refresh(timeout=timeout)
    try:
        return fn()
    except TransportError as e:
        if is_jwt_expired(e):
            raise AuthenticationExpiredError(str(e)) from e
        raise


def is_retryable(err: BaseException) -> bool:
    """Default condition for ``retry_with_exponential_backoff``."""
    return isinstance(err, TransportError) and err.code == StatusCode.UNAVAILABLE


def retry_with_exponential_backoff(
    op: Callable[[], T],
    retryable: Callable[[BaseException], bool] = is_retryable,
    max_attempts: int = MAX_ATTEMPTS,
    initial_backoff: float = INITIAL_BACKOFF
) -> T:
    """
    Call ``op`` up to ``max_attempts`` times, doubling the pause each time.

    Errors for which ``retryable`` is false are raised immediately.

    Example:
        >>> def transfer():
        ...     with client.begin_transaction() as txn:
        ...         txn.mutate(set_obj={"uid": "0x1", "balance": 10})
        ...         txn.commit()
        >>> retry_with_exponential_backoff(
        ...     transfer, lambda e: isinstance(e, TransactionAbortedError))
    """
    backoff = initial_backoff
    for attempt in range(1, max_attempts + 1):
        try:
            return op()
        except Exception as e:
            if not retryable(e) or attempt == max_attempts:
                raise
            logger.debug("Attempt %d/%d failed (%s), retrying in %.2fs",
                         attempt, max_attempts, e, backoff)
        time.sleep(backoff)
        backoff *= 2
    raise ValueError("max_attempts must be at least 1")
