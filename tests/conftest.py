"""
Shared fixtures: an in-memory server behind fake transports.

The fake server hands out timestamps, derives conflict keys from mutations
and aborts a commit when a transaction that committed after its start
timestamp wrote an overlapping key.
"""

import itertools
import threading

import pytest

from dgclient import DgraphClient
from dgclient.api import Jwt, TxnContext, Response
from dgclient.exceptions import StatusCode, TransportError
from dgclient.transport import Transport


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a running Dgraph alpha")


def _mutation_keys(mutation):
    """Conflict keys and predicates a mutation touches."""
    keys, preds = [], []
    for nquads in (mutation.set_nquads, mutation.del_nquads):
        for line in nquads.splitlines():
            tokens = line.split()
            if len(tokens) < 2:
                continue
            subject, predicate = tokens[0], tokens[1].strip("<>")
            keys.append(f"{subject}|{predicate}")
            preds.append(predicate)
    for obj in (mutation.set_obj, mutation.del_obj):
        for item in obj if isinstance(obj, list) else [obj] if obj else []:
            uid = item.get("uid", "_:new")
            for field in item:
                if field != "uid":
                    keys.append(f"{uid}|{field}")
                    preds.append(field)
    return keys, preds


class FakeServer:
    """Timestamp oracle, token issuer and conflict checker."""

    def __init__(self):
        self._ts = itertools.count(1)
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self.calls = []
        self.committed = []
        self.aborted = []
        self.refresh_calls = 0
        self.users = {"groot": "password"}
        self.refresh_jwt = ""
        self.expire_next = 0
        self.fail_next = None
        self.query_data = {}

    def next_ts(self):
        return next(self._ts)

    def record(self, method, payload, metadata):
        with self._lock:
            self.calls.append((method, payload, dict(metadata)))

    def calls_of(self, method):
        return [call for call in self.calls if call[0] == method]

    def check(self):
        """Apply scripted failures to a non-login call."""
        if self.expire_next > 0:
            self.expire_next -= 1
            raise TransportError("unable to parse jwt token:Token is expired",
                                 StatusCode.UNAUTHENTICATED)
        if self.fail_next is not None:
            err, self.fail_next = self.fail_next, None
            raise err

    def issue_tokens(self):
        n = next(self._tokens)
        self.refresh_jwt = f"refresh-{n}"
        return Jwt(f"access-{n}", self.refresh_jwt)

    def commit(self, context):
        mine = set(context.keys)
        for commit_ts, keys in self.committed:
            if commit_ts > context.start_ts and keys & mine:
                self.aborted.append(context.start_ts)
                raise TransportError("Transaction has been aborted. Please retry",
                                     StatusCode.ABORTED)
        commit_ts = self.next_ts()
        self.committed.append((commit_ts, mine))
        return commit_ts


class FakeTransport(Transport):
    """Transport talking to a FakeServer."""

    def __init__(self, server, name="fake"):
        self.server = server
        self.name = name
        self.closed = False
        self.query_count = 0
        self.timeouts = []

    def login(self, request, metadata, timeout=None):
        self.server.record("login", request, metadata)
        if request.refresh_token:
            self.server.refresh_calls += 1
            if request.refresh_token != self.server.refresh_jwt:
                raise TransportError("invalid refresh token", StatusCode.UNAUTHENTICATED)
            return self.server.issue_tokens()
        if self.server.users.get(request.userid) != request.password:
            raise TransportError("invalid username or password", StatusCode.UNAUTHENTICATED)
        return self.server.issue_tokens()

    def query(self, request, metadata, timeout=None):
        self.query_count += 1
        self.timeouts.append(timeout)
        self.server.record("query", request, metadata)
        self.server.check()

        context = TxnContext(start_ts=request.start_ts or self.server.next_ts())
        uids = {}
        if request.mutations:
            for mutation in request.mutations:
                keys, preds = _mutation_keys(mutation)
                context.keys.extend(keys)
                context.preds.extend(preds)
                for line in mutation.set_nquads.splitlines():
                    subject = line.split()[0] if line.split() else ""
                    if subject.startswith("_:"):
                        uids[subject[2:]] = hex(0x100 + len(uids))
            if request.commit_now:
                context.commit_ts = self.server.commit(context)
        else:
            context.hash = f"hash-{context.start_ts}"
        return Response(data=dict(self.server.query_data), txn=context, uids=uids)

    def commit_or_abort(self, context, metadata, timeout=None):
        self.server.record("commit", context.copy(), metadata)
        self.server.check()
        if context.aborted:
            return context.copy()
        commit_ts = self.server.commit(context)
        return TxnContext(start_ts=context.start_ts, commit_ts=commit_ts)

    def alter(self, operation, metadata, timeout=None):
        self.server.record("alter", operation, metadata)
        self.server.check()
        return {"code": "Success", "message": "Done"}

    def check_version(self, metadata, timeout=None):
        self.server.record("check_version", None, metadata)
        self.server.check()
        return "v24.0.0"

    def create_namespace(self, password, metadata, timeout=None):
        self.server.record("create_namespace", password, metadata)
        self.server.check()
        return 7

    def drop_namespace(self, ns_id, metadata, timeout=None):
        self.server.record("drop_namespace", ns_id, metadata)
        self.server.check()

    def list_namespaces(self, metadata, timeout=None):
        self.server.record("list_namespaces", None, metadata)
        self.server.check()
        return [0, 7]

    def close(self):
        self.closed = True


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def make_transport(server):
    def factory(name="fake"):
        return FakeTransport(server, name)
    return factory


@pytest.fixture
def transport(make_transport):
    return make_transport()


@pytest.fixture
def client(transport):
    return DgraphClient.from_transports(transport)


@pytest.fixture
def logged_in_client(client):
    client.login("groot", "password")
    return client
