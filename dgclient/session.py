"""
Credential session shared by every transaction of a client.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional, Dict, Iterator

from .api import Jwt, LoginRequest
from .exceptions import EmptyRefreshTokenError
from .pool import ConnectionPool

logger = logging.getLogger(__name__)

ACCESS_JWT_KEY = "accessJwt"


class ReadWriteLock:
    """
    Many concurrent readers or a single writer.

    Once a writer is waiting, new readers queue behind it.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CredentialSession:
    """
    Holds the access/refresh token pair and replaces it on sign-in or refresh.

    Safe to share between threads: reads take the read lock, replacements
    take the write lock for the whole remote call, so concurrent refreshes
    run one after another.
    """

    def __init__(self, pool: ConnectionPool):
        self._pool = pool
        self._lock = ReadWriteLock()
        self._jwt = Jwt()

    @property
    def jwt(self) -> Jwt:
        """Snapshot of the current tokens."""
        with self._lock.read_locked():
            return Jwt(self._jwt.access_jwt, self._jwt.refresh_jwt)

    def set_jwt(self, jwt: Jwt) -> None:
        with self._lock.write_locked():
            self._jwt = Jwt(jwt.access_jwt, jwt.refresh_jwt)

    def clear(self) -> None:
        self.set_jwt(Jwt())

    def is_authenticated(self) -> bool:
        with self._lock.read_locked():
            return bool(self._jwt.access_jwt)

    def attach_to(self, metadata: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Return a copy of ``metadata`` carrying the access token.

        Unchanged (but copied) when no token is held.
        """
        outgoing = dict(metadata or {})
        with self._lock.read_locked():
            if self._jwt.access_jwt:
                outgoing[ACCESS_JWT_KEY] = self._jwt.access_jwt
        return outgoing

    def sign_in(
        self,
        userid: str,
        password: str,
        namespace: int = 0,
        timeout: Optional[float] = None
    ) -> None:
        """
        Log in with a user id and password.

        Raises:
            TransportError: If the server rejects the login
        """
        request = LoginRequest(userid=userid, password=password, namespace=namespace)
        with self._lock.write_locked():
            jwt = self._pool.any().login(request, metadata={}, timeout=timeout)
            self._jwt = Jwt(jwt.access_jwt, jwt.refresh_jwt)
        logger.info("Signed in as %s (namespace %d)", userid, namespace)

    def refresh(self, timeout: Optional[float] = None) -> None:
        """
        Replace both tokens by logging in with the refresh token.

        Raises:
            EmptyRefreshTokenError: If no refresh token is held
            TransportError: If the server rejects the refresh token
        """
        with self._lock.write_locked():
            if not self._jwt.refresh_jwt:
                raise EmptyRefreshTokenError()
            request = LoginRequest(refresh_token=self._jwt.refresh_jwt)
            jwt = self._pool.any().login(request, metadata={}, timeout=timeout)
            self._jwt = Jwt(jwt.access_jwt, jwt.refresh_jwt)
        logger.info("Refreshed access token")
