"""
Endpoint selection across a fixed set of transports.
"""

import logging
import random
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple, Iterator, TYPE_CHECKING

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)


class EndpointSelector(ABC):
    """Picks one transport for a call."""

    @abstractmethod
    def select(self, transports: Sequence["Transport"]) -> "Transport":
        ...


class RandomSelector(EndpointSelector):
    """Uniform random choice; stateless between calls."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def select(self, transports: Sequence["Transport"]) -> "Transport":
        return self._rng.choice(transports)


class ConnectionPool:
    """
    Immutable set of transports to one or more endpoints.

    Example:
        >>> pool = ConnectionPool([HttpTransport("http://a:8080"), HttpTransport("http://b:8080")])
        >>> transport = pool.any()
    """

    def __init__(
        self,
        transports: Sequence["Transport"],
        selector: Optional[EndpointSelector] = None
    ):
        if not transports:
            raise ValueError("connection pool needs at least one transport")
        self._transports: Tuple["Transport", ...] = tuple(transports)
        self._selector = selector or RandomSelector()

    @property
    def transports(self) -> Tuple["Transport", ...]:
        return self._transports

    def any(self) -> "Transport":
        """Pick a transport for the next call."""
        return self._selector.select(self._transports)

    def close(self) -> None:
        """Close every transport."""
        for transport in self._transports:
            try:
                transport.close()
            except Exception as e:
                logger.warning("Failed to close transport %r: %s", transport, e)

    def __len__(self) -> int:
        return len(self._transports)

    def __iter__(self) -> Iterator["Transport"]:
        return iter(self._transports)
