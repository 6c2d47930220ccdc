import logging
import threading
import time
from typing import List, Optional, Sequence

import pytest

from models.delivery import BatchStatus
from models.records import SensorReading
from services.dispatcher import NotificationDispatcher
from services.pipeline import AlertPipeline, AlertStatus
from services.retry import RetryPolicy
from storage.reading_feed import ChangeEvent, ReadingFeed
from transport.mock_push import MockPushTransport


class StubDirectory:
    def __init__(self, tokens: Sequence[Optional[str]] = ()) -> None:
        self.tokens = list(tokens)
        self.lookups = 0

    def list_addresses(self) -> List[Optional[str]]:
        self.lookups += 1
        return list(self.tokens)


class BrokenDirectory:
    def list_addresses(self) -> List[str]:
        raise RuntimeError("directory offline")


def _healthy(site_id: str = "pond-1") -> SensorReading:
    return SensorReading(
        site_id=site_id,
        ph=7.0,
        temperature=22.0,
        dissolved_oxygen=6.0,
        dissolved_solids=200.0,
        turbidity=5.0,
    )


def _alerting(site_id: str = "pond-1") -> SensorReading:
    return SensorReading(
        site_id=site_id,
        ph=7.0,
        temperature=22.0,
        dissolved_oxygen=3.0,
        dissolved_solids=200.0,
        turbidity=5.0,
    )


def _pipeline(
    directory, transport=None, workers: int = 2, max_pending: int = 100
) -> AlertPipeline:
    dispatcher = NotificationDispatcher(
        transport=transport or MockPushTransport(),
        batch_size=5,
        retry_policy=RetryPolicy(max_attempts=3, delay=0.0),
        call_timeout=None,
    )
    return AlertPipeline(
        directory=directory, dispatcher=dispatcher, workers=workers, max_pending=max_pending
    )


def test_healthy_reading_skips_directory_and_transport() -> None:
    directory = StubDirectory(["token-a"])
    transport = MockPushTransport()
    pipeline = _pipeline(directory, transport)

    result = pipeline.process(_healthy())

    assert result.status is AlertStatus.no_alert
    assert result.violations == []
    assert result.payload is None
    assert directory.lookups == 0
    assert transport.call_count == 0
    pipeline.shutdown()


def test_alert_without_recipients_is_not_dispatched(caplog) -> None:
    directory = StubDirectory([None, ""])
    transport = MockPushTransport()
    pipeline = _pipeline(directory, transport)

    with caplog.at_level(logging.INFO, logger="services.pipeline"):
        result = pipeline.process(_alerting())

    assert result.status is AlertStatus.no_recipients
    assert result.outcome is None
    assert directory.lookups == 1
    assert transport.call_count == 0
    assert any("No registered recipient tokens" in r.getMessage() for r in caplog.records)
    pipeline.shutdown()


def test_alert_is_dispatched_to_every_token() -> None:
    directory = StubDirectory(["token-a", None, "token-b", ""])
    transport = MockPushTransport()
    pipeline = _pipeline(directory, transport)

    result = pipeline.process(_alerting("pond-9"))

    assert result.status is AlertStatus.dispatched
    assert result.recipient_count == 2
    assert result.outcome is not None
    assert result.outcome.succeeded == 2
    [message] = transport.delivered()
    assert message.addresses == ("token-a", "token-b")
    assert message.payload.title == "⚠️ Alert at pond-9"
    assert message.payload.body == "Oxygen out of range: 3 mg/L"
    pipeline.shutdown()


def test_exhausted_dispatch_is_reported_not_raised() -> None:
    directory = StubDirectory(["token-a"])
    pipeline = _pipeline(directory, MockPushTransport(always_fail=True))

    result = pipeline.process(_alerting())

    assert result.status is AlertStatus.dispatched
    assert result.outcome is not None
    assert result.outcome.batches[0].status is BatchStatus.exhausted
    assert result.outcome.succeeded == 0
    pipeline.shutdown()


def test_evaluate_never_contacts_collaborators() -> None:
    directory = StubDirectory(["token-a"])
    transport = MockPushTransport()
    pipeline = _pipeline(directory, transport)

    result = pipeline.evaluate(_alerting())

    assert result.violations == ["Oxygen out of range: 3 mg/L"]
    assert result.payload is not None
    assert directory.lookups == 0
    assert transport.call_count == 0
    pipeline.shutdown()


def test_submitted_run_failure_is_captured_and_logged(caplog) -> None:
    pipeline = _pipeline(BrokenDirectory())

    with caplog.at_level(logging.ERROR, logger="services.pipeline"):
        future = pipeline.submit(_alerting("pond-4"), reading_id="reading-1")
        assert pipeline.drain(timeout=5)

    assert isinstance(future.exception(), RuntimeError)
    failures = [r for r in caplog.records if r.getMessage() == "Pipeline run failed"]
    assert failures
    assert failures[0].exc_info is not None
    assert getattr(failures[0], "reading_id", None) == "reading-1"
    assert getattr(failures[0], "site_id", None) == "pond-4"
    pipeline.shutdown()


def test_failed_run_does_not_affect_next_reading() -> None:
    class FlakyDirectory(StubDirectory):
        def list_addresses(self):
            self.lookups += 1
            if self.lookups == 1:
                raise RuntimeError("transient lookup failure")
            return list(self.tokens)

    transport = MockPushTransport()
    pipeline = _pipeline(FlakyDirectory(["token-a"]), transport, workers=1)

    first = pipeline.submit(_alerting("pond-1"))
    second = pipeline.submit(_alerting("pond-2"))
    assert pipeline.drain(timeout=5)

    assert first.exception() is not None
    assert second.result().status is AlertStatus.dispatched
    assert transport.call_count == 1
    pipeline.shutdown()


def test_slow_dispatch_does_not_stall_other_readings() -> None:
    barrier = threading.Barrier(2)
    sleep_seconds = 0.1

    class CoordinatedDirectory(StubDirectory):
        def list_addresses(self):
            try:
                barrier.wait(timeout=1.0)
            except threading.BrokenBarrierError as exc:
                raise AssertionError("Pipeline runs did not execute concurrently") from exc
            time.sleep(sleep_seconds)
            return super().list_addresses()

    transport = MockPushTransport()
    pipeline = _pipeline(CoordinatedDirectory(["token-a"]), transport, workers=2)

    start = time.perf_counter()
    futures = [pipeline.submit(_alerting("pond-1")), pipeline.submit(_alerting("pond-2"))]
    results = [future.result(timeout=5) for future in futures]
    elapsed = time.perf_counter() - start

    assert all(result.status is AlertStatus.dispatched for result in results)
    assert transport.call_count == 2
    assert elapsed < sleep_seconds * 2.5
    pipeline.shutdown()


def test_attached_pipeline_alerts_on_feed_additions() -> None:
    feed = ReadingFeed()
    transport = MockPushTransport()
    pipeline = _pipeline(StubDirectory(["token-a"]), transport)
    pipeline.attach(feed)

    feed.append({"site_id": "pond-1", "sensor_values": {"dissolved_oxygen": 3, "ph": 7, "temperature": 22}})
    feed.append({"site_id": "pond-2", "sensor_values": {"dissolved_oxygen": 6, "ph": 7, "temperature": 22}})
    assert pipeline.drain(timeout=5)

    [message] = transport.delivered()
    assert message.payload.data["siteId"] == "pond-1"
    pipeline.shutdown()


def test_non_added_events_are_ignored() -> None:
    transport = MockPushTransport()
    pipeline = _pipeline(StubDirectory(["token-a"]), transport)

    pipeline.handle_event(ChangeEvent(type="removed", document_id="doc-1", reading=_alerting()))
    assert pipeline.drain(timeout=5)

    assert transport.call_count == 0
    pipeline.shutdown()


def test_shutdown_detaches_from_feed() -> None:
    feed = ReadingFeed()
    transport = MockPushTransport()
    pipeline = _pipeline(StubDirectory(["token-a"]), transport)
    pipeline.attach(feed)

    pipeline.shutdown(wait=True)
    feed.append({"site_id": "pond-1", "sensor_values": {"dissolved_oxygen": 1}})

    assert transport.call_count == 0
    with pytest.raises(RuntimeError):
        pipeline.submit(_alerting())




@pytest.mark.parametrize("workers", [1, 3])
def test_pool_runs_up_to_worker_count_concurrently(workers: int) -> None:
    barrier = threading.Barrier(workers)

    class GatheringDirectory(StubDirectory):
        def list_addresses(self):
            barrier.wait(timeout=2.0)
            return super().list_addresses()

    pipeline = _pipeline(GatheringDirectory(["token-a"]), workers=workers)

    futures = [pipeline.submit(_alerting(f"pond-{index}")) for index in range(workers)]

    assert all(f.result(timeout=5).status is AlertStatus.dispatched for f in futures)
    assert pipeline.workers == workers
    pipeline.shutdown()


def test_submit_blocks_while_pending_limit_is_reached() -> None:
    release = threading.Event()

    class GatedDirectory(StubDirectory):
        def list_addresses(self):
            release.wait(timeout=5)
            return super().list_addresses()

    transport = MockPushTransport()
    pipeline = _pipeline(GatedDirectory(["token-a"]), transport, workers=1, max_pending=1)
    pipeline.submit(_alerting("pond-1"))
    submitted = threading.Event()

    def submit_second() -> None:
        pipeline.submit(_alerting("pond-2"))
        submitted.set()

    waiting = threading.Thread(target=submit_second)
    waiting.start()

    assert not submitted.wait(timeout=0.2)

    release.set()
    assert submitted.wait(timeout=5)
    waiting.join(timeout=5)
    assert pipeline.drain(timeout=5)
    assert transport.call_count == 2
    pipeline.shutdown()
