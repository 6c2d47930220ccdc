"""Batched, retried delivery of alert payloads over a push transport."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Iterable, Iterator, List, Optional, Sequence

from models.delivery import BatchOutcome, BatchStatus, DeliveryOutcome, SendResult
from models.records import AlertPayload
from services.retry import RetryExhaustedError, RetryPolicy
from transport.base import PushTransport, TransportTimeoutError

logger = logging.getLogger(__name__)


def _chunk(items: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class NotificationDispatcher:
    """Deliver one payload to many addresses in fixed-size batches.

    Batches are sent in input order and each runs through the shared retry
    policy on its own, so one exhausted batch never stops the rest. Only a
    failed call is retried; a call that returns mixed per-address results
    counts as delivered. ``dispatch`` reports exhaustion in the returned
    outcome and does not raise for it.
    """

    def __init__(
        self,
        transport: PushTransport,
        batch_size: int = 500,
        retry_policy: Optional[RetryPolicy] = None,
        call_timeout: Optional[float] = 10.0,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        self.transport = transport
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.call_timeout = call_timeout

    def dispatch(self, addresses: Iterable[str], payload: AlertPayload) -> DeliveryOutcome:
        targets = [address for address in addresses if address and address.strip()]
        outcome = DeliveryOutcome()
        if not targets:
            logger.info("No recipient addresses; skipping dispatch")
            return outcome

        for index, batch in enumerate(_chunk(targets, self.batch_size)):
            outcome.batches.append(self._dispatch_batch(index, batch, payload))

        log = logger.error if outcome.fully_exhausted else logger.info
        log(
            "Dispatch finished across %d batch(es)",
            outcome.batch_count,
            extra={
                "recipient_count": outcome.attempted,
                "succeeded": outcome.succeeded,
                "failed": outcome.failed,
            },
        )
        return outcome

    def _dispatch_batch(
        self, index: int, batch: List[str], payload: AlertPayload
    ) -> BatchOutcome:
        result = BatchOutcome(index=index, size=len(batch))

        def attempt() -> SendResult:
            result.attempts += 1
            result.status = BatchStatus.attempting
            try:
                return self._send_once(batch, payload)
            except Exception as exc:
                result.status = BatchStatus.transient_failure
                result.error = str(exc)
                raise

        try:
            sent = self.retry_policy.call(attempt)
        except RetryExhaustedError as exc:
            result.status = BatchStatus.exhausted
            result.succeeded = 0
            result.failed = len(batch)
            result.error = str(exc.last_error)
            logger.error(
                "Batch exhausted its retry budget",
                extra={
                    "batch_index": index,
                    "batch_size": len(batch),
                    "attempt": result.attempts,
                    "reason": result.error,
                },
            )
            return result

        result.status = BatchStatus.succeeded
        result.succeeded = sent.success_count
        result.failed = sent.failure_count
        result.error = None
        logger.info(
            "Batch delivered",
            extra={
                "batch_index": index,
                "batch_size": len(batch),
                "attempt": result.attempts,
                "succeeded": result.succeeded,
                "failed": result.failed,
            },
        )
        return result

    def _send_once(self, batch: List[str], payload: AlertPayload) -> SendResult:
        if self.call_timeout is None:
            return self.transport.send(batch, payload)

        # One daemon thread per call. An abandoned call keeps its thread until
        # the transport returns; only the wait is bounded here.
        future: Future[SendResult] = Future()

        def run() -> None:
            future.set_running_or_notify_cancel()
            try:
                future.set_result(self.transport.send(batch, payload))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(target=run, name="push-call", daemon=True).start()
        try:
            return future.result(timeout=self.call_timeout)
        except FutureTimeoutError as exc:
            raise TransportTimeoutError(
                f"Transport call exceeded {self.call_timeout:.1f}s."
            ) from exc
