from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Iterable, List, Sequence

from models.delivery import SendResult
from models.records import AlertPayload
from transport.base import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    addresses: tuple[str, ...]
    payload: AlertPayload


class MockPushTransport:
    """In-memory push backend with scriptable failures.

    ``fail_first`` makes the first N calls raise, ``always_fail`` makes every
    call raise, and tokens listed in ``invalid_tokens`` are reported as
    per-address failures inside an otherwise successful call.
    """

    def __init__(
        self,
        fail_first: int = 0,
        always_fail: bool = False,
        invalid_tokens: Iterable[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.invalid_tokens = frozenset(invalid_tokens)
        self.delay = delay
        self.calls: List[tuple[str, ...]] = []
        self._delivered: List[SentMessage] = []
        self._lock = Lock()

    def send(self, addresses: Sequence[str], payload: AlertPayload) -> SendResult:
        batch = tuple(addresses)
        with self._lock:
            self.calls.append(batch)
            call_number = len(self.calls)

        if self.delay:
            time.sleep(self.delay)

        if self.always_fail or call_number <= self.fail_first:
            raise TransportError(f"Simulated transport failure on call {call_number}.")

        failures = sum(1 for address in batch if address in self.invalid_tokens)
        with self._lock:
            self._delivered.append(SentMessage(addresses=batch, payload=payload))
        logger.debug("Mock push accepted %d address(es)", len(batch))
        return SendResult(success_count=len(batch) - failures, failure_count=failures)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def delivered(self) -> list[SentMessage]:
        with self._lock:
            return list(self._delivered)
