"""Contract between the dispatcher and a push-delivery backend."""

from __future__ import annotations

from typing import Protocol, Sequence

from models.delivery import SendResult
from models.records import AlertPayload


class TransportError(Exception):
    """A send call failed as a whole; no per-address results are available."""


class TransportTimeoutError(TransportError):
    """A send call did not return within the allowed time."""


class PushTransport(Protocol):
    def send(self, addresses: Sequence[str], payload: AlertPayload) -> SendResult:
        """Deliver ``payload`` to every address, raising on transport failure."""
        ...
