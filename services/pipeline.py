"""Per-reading alert pipeline run on a bounded worker pool."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from threading import BoundedSemaphore, Condition, Lock
from typing import List, Optional, Protocol, Sequence, Set

from datastore.recipient_directory import build_default_directory
from models.delivery import DeliveryOutcome
from models.records import AlertPayload, SensorReading
from services.dispatcher import NotificationDispatcher
from services.retry import RetryPolicy
from services.risk import RiskEstimator
from services.thresholds import ThresholdEvaluator, build_alert_payload
from settings import get_settings
from storage.reading_feed import ADDED, ChangeEvent, ReadingFeed, Subscription
from transport.http_push import build_default_transport

logger = logging.getLogger(__name__)


class RecipientSource(Protocol):
    def list_addresses(self) -> Sequence[str]:
        ...


class AlertStatus(str, Enum):
    """How a single reading left the pipeline."""

    no_alert = "no_alert"
    no_recipients = "no_recipients"
    dispatched = "dispatched"


@dataclass
class PipelineResult:
    site_id: str
    risk_score: float
    violations: List[str] = field(default_factory=list)
    status: AlertStatus = AlertStatus.no_alert
    payload: Optional[AlertPayload] = None
    recipient_count: int = 0
    outcome: Optional[DeliveryOutcome] = None


class AlertPipeline:
    """Estimate, evaluate and, when needed, notify for each incoming reading.

    Runs are independent: each works on its own reading and its own
    :class:`DeliveryOutcome`, so any number may execute concurrently on the
    pool. ``submit`` blocks once ``max_pending`` runs are queued or in flight.
    """

    def __init__(
        self,
        directory: RecipientSource,
        dispatcher: NotificationDispatcher,
        estimator: Optional[RiskEstimator] = None,
        evaluator: Optional[ThresholdEvaluator] = None,
        workers: int = 4,
        max_pending: int = 100,
    ) -> None:
        self.directory = directory
        self.dispatcher = dispatcher
        self.estimator = estimator or RiskEstimator()
        self.evaluator = evaluator or ThresholdEvaluator()
        self.workers = workers
        self.executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="alert-pipeline"
        )
        self._slots = BoundedSemaphore(max(max_pending, workers))
        self._futures: Set[Future[PipelineResult]] = set()
        self._futures_lock = Lock()
        self._idle = Condition(self._futures_lock)
        self._subscription: Optional[Subscription] = None

    def evaluate(self, reading: SensorReading) -> PipelineResult:
        """Score a reading and build its alert without contacting anyone."""

        risk_score = self.estimator.estimate(reading)
        violations = self.evaluator.evaluate(reading, risk_score)
        payload = (
            build_alert_payload(reading, risk_score, violations) if violations else None
        )
        return PipelineResult(
            site_id=reading.site_id,
            risk_score=risk_score,
            violations=violations,
            payload=payload,
        )

    def process(self, reading: SensorReading) -> PipelineResult:
        start_time = time.perf_counter()
        result = self.evaluate(reading)
        context = {
            "site_id": result.site_id,
            "risk_score": result.risk_score,
            "violation_count": len(result.violations),
        }

        if result.payload is None:
            logger.info("Readings within range; no alert sent", extra=context)
            return result

        addresses = [address for address in self.directory.list_addresses() if address]
        result.recipient_count = len(addresses)
        if not addresses:
            result.status = AlertStatus.no_recipients
            logger.info("No registered recipient tokens; alert not sent", extra=context)
            return result

        result.outcome = self.dispatcher.dispatch(addresses, result.payload)
        result.status = AlertStatus.dispatched
        logger.info(
            "Alert dispatched",
            extra={
                **context,
                "recipient_count": result.recipient_count,
                "succeeded": result.outcome.succeeded,
                "failed": result.outcome.failed,
                "processing_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return result

    def submit(
        self, reading: SensorReading, reading_id: Optional[str] = None
    ) -> Future[PipelineResult]:
        self._slots.acquire()
        try:
            future = self.executor.submit(self.process, reading)
        except Exception:
            self._slots.release()
            raise

        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(
            lambda f, rid=reading_id, site=reading.site_id: self._on_done(f, rid, site)
        )
        return future

    def handle_event(self, event: ChangeEvent) -> None:
        if event.type != ADDED:
            logger.debug("Ignoring %s event", event.type, extra={"reading_id": event.document_id})
            return
        self.submit(event.reading, reading_id=event.document_id)

    def attach(self, feed: ReadingFeed, latest_only: bool = False) -> Subscription:
        self._subscription = feed.subscribe(self.handle_event, latest_only=latest_only)
        return self._subscription

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until no run is queued or in flight; False on timeout."""

        with self._idle:
            return self._idle.wait_for(lambda: not self._futures, timeout=timeout)

    def shutdown(self, wait: bool = False) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.executor.shutdown(wait=wait, cancel_futures=not wait)

    def _on_done(
        self, future: Future[PipelineResult], reading_id: Optional[str], site_id: str
    ) -> None:
        context = {"reading_id": reading_id, "site_id": site_id}
        try:
            if future.cancelled():
                logger.warning("Pipeline run cancelled before it started", extra=context)
                return
            error = future.exception()
            if error is not None:
                logger.error(
                    "Pipeline run failed",
                    exc_info=(type(error), error, error.__traceback__),
                    extra=context,
                )
        finally:
            self._slots.release()
            with self._idle:
                self._futures.discard(future)
                self._idle.notify_all()


@lru_cache
def build_default_pipeline(workers: Optional[int] = None) -> AlertPipeline:
    """Factory that wires the pipeline with settings-driven defaults."""
    settings = get_settings()
    worker_count = workers or settings.pipeline_workers
    dispatcher = NotificationDispatcher(
        transport=build_default_transport(),
        batch_size=settings.batch_size,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            delay=settings.retry_delay,
            jitter=settings.retry_jitter,
        ),
        call_timeout=settings.call_timeout or None,
    )
    return AlertPipeline(
        directory=build_default_directory(),
        dispatcher=dispatcher,
        workers=worker_count,
        max_pending=settings.pipeline_max_pending,
    )
