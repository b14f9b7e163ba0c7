"""
Request and response types exchanged with a transport.
"""

from typing import Optional, Dict, Any, List, Iterable


def _union(existing: List[str], extra: Iterable[str]) -> List[str]:
    """Append items of ``extra`` not already present, keeping order."""
    merged = list(existing)
    seen = set(merged)
    for item in extra:
        if item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


class Jwt:
    """Access/refresh token pair."""

    def __init__(self, access_jwt: str = "", refresh_jwt: str = ""):
        self.access_jwt = access_jwt
        self.refresh_jwt = refresh_jwt

    def __eq__(self, other):
        if not isinstance(other, Jwt):
            return NotImplemented
        return (self.access_jwt, self.refresh_jwt) == (other.access_jwt, other.refresh_jwt)

    def __repr__(self):
        # tokens are secrets
        return f"Jwt(access_jwt={'set' if self.access_jwt else 'empty'}, " \
               f"refresh_jwt={'set' if self.refresh_jwt else 'empty'})"


class LoginRequest:
    """Login by password or by refresh token."""

    def __init__(
        self,
        userid: str = "",
        password: str = "",
        namespace: int = 0,
        refresh_token: str = ""
    ):
        self.userid = userid
        self.password = password
        self.namespace = namespace
        self.refresh_token = refresh_token

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if self.refresh_token:
            return {"refresh_token": self.refresh_token}
        return {
            "userid": self.userid,
            "password": self.password,
            "namespace": self.namespace,
        }


class TxnContext:
    """
    Server-assigned transaction state.

    ``keys`` are conflict keys and ``preds`` read predicate hashes; both are
    opaque to the client and only relayed back at commit time.
    """

    def __init__(
        self,
        start_ts: int = 0,
        commit_ts: int = 0,
        aborted: bool = False,
        keys: Optional[Iterable[str]] = None,
        preds: Optional[Iterable[str]] = None,
        hash: str = ""
    ):
        self.start_ts = start_ts
        self.commit_ts = commit_ts
        self.aborted = aborted
        self.keys = list(keys or [])
        self.preds = list(preds or [])
        self.hash = hash

    def merge_keys(self, other: "TxnContext") -> None:
        """Union ``other``'s keys and preds into this context."""
        self.keys = _union(self.keys, other.keys)
        self.preds = _union(self.preds, other.preds)

    def copy(self) -> "TxnContext":
        return TxnContext(
            start_ts=self.start_ts,
            commit_ts=self.commit_ts,
            aborted=self.aborted,
            keys=self.keys,
            preds=self.preds,
            hash=self.hash
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_ts": self.start_ts,
            "commit_ts": self.commit_ts,
            "aborted": self.aborted,
            "keys": list(self.keys),
            "preds": list(self.preds),
            "hash": self.hash,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["TxnContext"]:
        """Build from the ``extensions.txn`` object of a server reply."""
        if not data:
            return None
        return TxnContext(
            start_ts=int(data.get("start_ts", 0) or 0),
            commit_ts=int(data.get("commit_ts", 0) or 0),
            aborted=bool(data.get("aborted", False)),
            keys=data.get("keys") or [],
            preds=data.get("preds") or [],
            hash=data.get("hash", "") or ""
        )

    def __repr__(self):
        return (f"TxnContext(start_ts={self.start_ts}, commit_ts={self.commit_ts}, "
                f"aborted={self.aborted}, keys={len(self.keys)}, preds={len(self.preds)})")


class Mutation:
    """
    A single mutation.

    JSON payloads go in ``set_obj``/``del_obj``, RDF in
    ``set_nquads``/``del_nquads``. ``cond`` is an ``@if(...)`` condition used
    inside upserts.
    """

    def __init__(
        self,
        set_obj: Any = None,
        del_obj: Any = None,
        set_nquads: str = "",
        del_nquads: str = "",
        cond: str = "",
        commit_now: bool = False
    ):
        self.set_obj = set_obj
        self.del_obj = del_obj
        self.set_nquads = set_nquads
        self.del_nquads = del_nquads
        self.cond = cond
        self.commit_now = commit_now

    def has_nquads(self) -> bool:
        return bool(self.set_nquads or self.del_nquads)

    def has_objects(self) -> bool:
        return self.set_obj is not None or self.del_obj is not None

    def is_json(self) -> bool:
        return not self.has_nquads()

    def is_empty(self) -> bool:
        return not self.has_objects() and not self.has_nquads()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.set_obj is not None:
            data["set"] = self.set_obj
        if self.del_obj is not None:
            data["delete"] = self.del_obj
        if self.cond:
            data["cond"] = self.cond
        return data


class Request:
    """
    A query, a mutation or an upsert (one query plus N mutations).

    ``start_ts``, ``hash``, ``read_only`` and ``best_effort`` are filled in
    by the owning transaction.
    """

    def __init__(
        self,
        query: str = "",
        variables: Optional[Dict[str, str]] = None,
        mutations: Optional[List[Mutation]] = None,
        commit_now: bool = False,
        resp_format: str = "json"
    ):
        self.query = query
        self.variables = dict(variables or {})
        self.mutations = list(mutations or [])
        self.commit_now = commit_now
        self.resp_format = resp_format
        self.start_ts = 0
        self.hash = ""
        self.read_only = False
        self.best_effort = False

    def validate(self) -> None:
        """
        Check the mutations can be sent as one HTTP request.

        A request carries either JSON or N-Quad mutations, never both; N-Quad
        requests cannot bind query variables, and ``cond`` needs a query.

        Raises:
            ValueError: If the request cannot be sent unchanged
        """
        if not self.mutations:
            return
        if any(mu.is_empty() for mu in self.mutations):
            raise ValueError("empty mutation")
        rdf = any(mu.has_nquads() for mu in self.mutations)
        if rdf and any(mu.has_objects() for mu in self.mutations):
            raise ValueError("JSON and N-Quad mutations cannot be mixed in one request")
        if rdf and self.variables:
            raise ValueError("query variables are not supported with N-Quad mutations")
        if not self.query and any(mu.cond for mu in self.mutations):
            raise ValueError("a mutation condition needs a query")


class Response:
    """Result of a query, mutation or upsert."""

    def __init__(
        self,
        data: Any = None,
        txn: Optional[TxnContext] = None,
        uids: Optional[Dict[str, str]] = None,
        latency: Optional[Dict[str, Any]] = None,
        rdf: str = ""
    ):
        self.data = data
        self.txn = txn
        self.uids = dict(uids or {})
        self.latency = dict(latency or {})
        self.rdf = rdf

    def __repr__(self):
        return f"Response(txn={self.txn!r}, uids={self.uids!r})"


class Operation:
    """Schema alteration or drop request."""

    DROP_DATA = "DATA"
    DROP_ATTR = "ATTR"
    DROP_TYPE = "TYPE"

    def __init__(
        self,
        schema: str = "",
        drop_all: bool = False,
        drop_op: str = "",
        drop_value: str = "",
        run_in_background: bool = False
    ):
        self.schema = schema
        self.drop_all = drop_all
        self.drop_op = drop_op
        self.drop_value = drop_value
        self.run_in_background = run_in_background

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.drop_all:
            data["drop_all"] = True
        if self.drop_op:
            data["drop_op"] = self.drop_op
        if self.drop_value:
            data["drop_value"] = self.drop_value
        return data


def delete_edges(mutation: Mutation, uid: str, *predicates: str) -> Mutation:
    """
    Mark every value of ``predicates`` on node ``uid`` for deletion.

    Only edits the mutation; run it on a transaction to apply it.

    Example:
        >>> mu = delete_edges(Mutation(), "0x1", "friend", "email")
        >>> txn.mutate(mu)
    """
    lines = [f"<{uid}> <{predicate}> * ." for predicate in predicates]
    if mutation.del_nquads:
        lines.insert(0, mutation.del_nquads.rstrip("\n"))
    mutation.del_nquads = "\n".join(lines)
    return mutation
