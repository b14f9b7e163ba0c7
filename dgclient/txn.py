"""
Optimistic transactions.

A transaction collects its start timestamp and conflict keys from every
query and mutation, then hands them back to the server on commit, which
either applies the writes or aborts because a concurrent transaction
committed an overlapping write first.
"""

import logging
from typing import Optional, Dict, Any, TYPE_CHECKING

from .api import Mutation, Request, Response, TxnContext
from .exceptions import (
    DgraphError,
    ReadOnlyError,
    StartTsMismatchError,
    StatusCode,
    TransactionAbortedError,
    TransactionFinishedError,
    TransportError,
)
from .retry import call_with_retry_login

if TYPE_CHECKING:
    from .pool import ConnectionPool
    from .session import CredentialSession

logger = logging.getLogger(__name__)


def _is_aborted(err: TransportError) -> bool:
    return err.code == StatusCode.ABORTED


class Txn:
    """
    A single-use optimistic transaction.

    Create one with ``DgraphClient.begin_transaction()``. Once committed or
    discarded it cannot be used again. A Txn is not thread safe: use it from
    one thread at a time.

    Example:
        >>> with client.begin_transaction() as txn:
        ...     resp = txn.query('{ q(func: eq(email, "x@y.io")) { uid } }')
        ...     txn.mutate(set_obj={"uid": resp.data["q"][0]["uid"], "visits": 2})
        ...     txn.commit()

    Catch ``TransactionAbortedError`` around the whole block to replay it when a
    concurrent transaction wins the conflict.
    """

    def __init__(
        self,
        pool: "ConnectionPool",
        session: "CredentialSession",
        read_only: bool = False,
        best_effort: bool = False,
        timeout: Optional[float] = None
    ):
        self._pool = pool
        self._session = session
        self._context = TxnContext()
        self._read_only = read_only or best_effort
        self._best_effort = best_effort
        self._timeout = timeout
        self._finished = False
        self._mutated = False
        self._committed_now = False

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def best_effort(self) -> bool:
        return self._best_effort

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def start_ts(self) -> int:
        return self._context.start_ts

    @property
    def context(self) -> TxnContext:
        """Copy of the accumulated transaction context."""
        return self._context.copy()

    def query(
        self,
        query: str,
        variables: Optional[Dict[str, str]] = None,
        resp_format: str = "json",
        timeout: Optional[float] = None
    ) -> Response:
        """
        Run a query inside the transaction.

        Args:
            query: DQL query text
            variables: Values for the query's ``$`` variables
            resp_format: ``json`` or ``rdf``
            timeout: Deadline in seconds for this call

        Returns:
            Response with the query result

        Raises:
            TransactionFinishedError: If the transaction was committed or discarded
        """
        request = Request(query=query, variables=variables, resp_format=resp_format)
        return self.do(request, timeout=timeout)

    def mutate(
        self,
        mutation: Optional[Mutation] = None,
        set_obj: Any = None,
        del_obj: Any = None,
        set_nquads: str = "",
        del_nquads: str = "",
        cond: str = "",
        commit_now: bool = False,
        timeout: Optional[float] = None
    ) -> Response:
        """
        Run a mutation inside the transaction.

        Pass a ``Mutation`` or its fields as keyword arguments. With
        ``commit_now`` the server commits in the same round trip and the
        transaction is finished afterwards.

        Returns:
            Response whose ``uids`` maps blank nodes to assigned uids

        Raises:
            TransactionFinishedError: If the transaction was committed or discarded
            ReadOnlyError: If the transaction is read-only
            TransactionAbortedError: If the server aborted the transaction
        """
        if mutation is None:
            mutation = Mutation(
                set_obj=set_obj,
                del_obj=del_obj,
                set_nquads=set_nquads,
                del_nquads=del_nquads,
                cond=cond,
                commit_now=commit_now
            )
        request = Request(mutations=[mutation], commit_now=mutation.commit_now or commit_now)
        return self.do(request, timeout=timeout)

    def do(self, request: Request, timeout: Optional[float] = None) -> Response:
        """
        Run a query, a mutation or an upsert (query plus mutations).

        Raises:
            TransactionFinishedError: If the transaction was committed or discarded
            ReadOnlyError: If mutations are sent on a read-only transaction
            ValueError: If the mutations cannot be sent as one request
            TransactionAbortedError: If the server aborted the transaction
        """
        if self._finished:
            raise TransactionFinishedError()

        if request.mutations:
            if self._read_only:
                raise ReadOnlyError()
            request.validate()
            self._mutated = True

        request.start_ts = self._context.start_ts
        request.hash = self._context.hash
        request.read_only = self._read_only
        request.best_effort = self._best_effort
        timeout = timeout if timeout is not None else self._timeout

        transport = self._pool.any()
        try:
            response = call_with_retry_login(
                self._session,
                lambda: transport.query(request, self._session.attach_to(), timeout),
                timeout=timeout
            )
        except DgraphError as e:
            if request.mutations:
                self._discard_quietly(timeout)
            if isinstance(e, TransportError) and _is_aborted(e):
                raise TransactionAbortedError(str(e)) from e
            raise

        if request.commit_now:
            self._finished = True
            self._committed_now = True
            logger.debug("Transaction %d committed with its mutation", self._context.start_ts)

        self._merge_context(response.txn)
        return response

    def commit(self, timeout: Optional[float] = None) -> None:
        """
        Commit the transaction.

        A no-op when nothing was mutated, and after a ``commit_now`` mutation.

        Raises:
            TransactionFinishedError: If already committed or discarded
            ReadOnlyError: If the transaction is read-only
            TransactionAbortedError: If a concurrent transaction conflicted
        """
        if self._committed_now:
            return
        if self._finished:
            raise TransactionFinishedError()
        if self._read_only:
            raise ReadOnlyError()

        self._finished = True
        if not self._mutated:
            return

        timeout = timeout if timeout is not None else self._timeout
        context = self._context.copy()
        transport = self._pool.any()
        try:
            call_with_retry_login(
                self._session,
                lambda: transport.commit_or_abort(context, self._session.attach_to(), timeout),
                timeout=timeout
            )
        except TransportError as e:
            if _is_aborted(e):
                logger.debug("Transaction %d aborted by the server", context.start_ts)
                raise TransactionAbortedError(str(e)) from e
            raise
        logger.debug("Transaction %d committed", context.start_ts)

    def discard(self, timeout: Optional[float] = None) -> None:
        """
        Abandon the transaction.

        Safe to call any number of times, including after ``commit``. The
        server is notified only when the transaction mutated; failures of
        that notification are logged, not raised.
        """
        if self._finished:
            return
        self._discard_quietly(timeout if timeout is not None else self._timeout)

    def _discard_quietly(self, timeout: Optional[float]) -> None:
        self._finished = True
        if not self._mutated:
            return

        context = self._context.copy()
        context.aborted = True
        transport = self._pool.any()
        try:
            call_with_retry_login(
                self._session,
                lambda: transport.commit_or_abort(context, self._session.attach_to(), timeout),
                timeout=timeout
            )
            logger.debug("Transaction %d discarded", context.start_ts)
        except Exception as e:
            logger.warning("Failed to discard transaction %d: %s", context.start_ts, e)

    def _merge_context(self, src: Optional[TxnContext]) -> None:
        if src is None:
            return

        if src.hash:
            self._context.hash = src.hash
        if self._context.start_ts == 0:
            self._context.start_ts = src.start_ts
        elif src.start_ts and src.start_ts != self._context.start_ts:
            raise StartTsMismatchError(
                f"StartTs mismatch: have {self._context.start_ts}, got {src.start_ts}"
            )
        self._context.merge_keys(src)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: discard unless committed."""
        self.discard()
        return False

    def __repr__(self):
        state = "finished" if self._finished else "active"
        mode = "best-effort" if self._best_effort else "read-only" if self._read_only else "read-write"
        return f"Txn(start_ts={self._context.start_ts}, {mode}, {state})"
