import threading
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.recipient_directory import RecipientDirectory, build_default_directory
from models.records import SensorReading
from services.dispatcher import NotificationDispatcher
from services.pipeline import AlertPipeline, build_default_pipeline
from services.retry import RetryPolicy
from settings import get_settings
from storage.reading_feed import ReadingFeed, build_default_feed
from transport.http_push import build_default_transport
from transport.mock_push import MockPushTransport


@pytest.fixture
def transport() -> MockPushTransport:
    return MockPushTransport()


@pytest.fixture
def directory() -> RecipientDirectory:
    return RecipientDirectory(name="test")


@pytest.fixture
def pipeline(transport, directory) -> AlertPipeline:
    dispatcher = NotificationDispatcher(
        transport=transport,
        batch_size=5,
        retry_policy=RetryPolicy(max_attempts=2, delay=0.0),
        call_timeout=None,
    )
    return AlertPipeline(directory=directory, dispatcher=dispatcher, workers=1)


@contextmanager
def _serve(monkeypatch, pipeline: AlertPipeline, directory: RecipientDirectory) -> Iterator[TestClient]:
    feed = ReadingFeed(name="test")

    def build_test_pipeline(workers: Optional[int] = None) -> AlertPipeline:
        return pipeline

    build_test_pipeline.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_pipeline", build_test_pipeline)
    monkeypatch.setattr("app.api.build_default_pipeline", build_test_pipeline)
    monkeypatch.setattr("app.main.build_default_feed", lambda: feed)
    monkeypatch.setattr("app.api.build_default_feed", lambda: feed)
    monkeypatch.setattr("app.api.build_default_directory", lambda: directory)

    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def api_client(monkeypatch, pipeline, directory) -> Iterator[TestClient]:
    with _serve(monkeypatch, pipeline, directory) as client:
        yield client


def _reading(site_id: str = "pond-1", **values: float) -> dict:
    sensor_values = {"ph": 7.0, "temperature": 22.0, "dissolved_oxygen": 6.0}
    sensor_values.update(values)
    return {"site_id": site_id, "sensor_values": sensor_values}


def _healthy_reading() -> SensorReading:
    return SensorReading(site_id="pond-1", ph=7.0, temperature=22.0, dissolved_oxygen=6.0)


def test_root_reports_liveness(api_client: TestClient) -> None:
    response = api_client.get("/")

    assert response.status_code == 200
    assert response.text == "Listener is running"


def test_health_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_submitted_alerting_reading_notifies_recipients(
    api_client: TestClient, transport: MockPushTransport, pipeline: AlertPipeline
) -> None:
    assert api_client.post("/recipients", json={"user_id": "u1", "token": "token-a"}).status_code == 201
    assert api_client.post("/recipients", json={"user_id": "u2", "token": "token-b"}).status_code == 201

    response = api_client.post("/readings", json=_reading("pond-5", dissolved_oxygen=3.0))

    assert response.status_code == 202
    assert response.json()["reading_id"]
    assert pipeline.drain(timeout=5)

    [message] = transport.delivered()
    assert message.addresses == ("token-a", "token-b")
    assert message.payload.title == "⚠️ Alert at pond-5"
    assert message.payload.body == "Oxygen out of range: 3 mg/L"


def test_healthy_reading_sends_nothing(
    api_client: TestClient,
    transport: MockPushTransport,
    directory: RecipientDirectory,
    pipeline: AlertPipeline,
) -> None:
    directory.register("u1", "token-a")

    response = api_client.post("/readings", json=_reading())

    assert response.status_code == 202
    assert pipeline.drain(timeout=5)
    assert transport.call_count == 0


def test_evaluate_previews_alert_without_sending(
    api_client: TestClient, transport: MockPushTransport, directory: RecipientDirectory
) -> None:
    directory.register("u1", "token-a")

    response = api_client.post("/readings/evaluate", json=_reading("pond-2", ph=8.5))

    assert response.status_code == 200
    body = response.json()
    assert body["site_id"] == "pond-2"
    assert body["risk_score"] == pytest.approx(0.015)
    assert body["violations"] == ["pH out of range: 8.5"]
    assert body["alert"]["body"] == "pH out of range: 8.5"
    assert body["alert"]["data"]["riskScore"] == "0.015"
    assert transport.call_count == 0


def test_evaluate_healthy_reading_has_no_alert(api_client: TestClient) -> None:
    response = api_client.post("/readings/evaluate", json=_reading())

    assert response.status_code == 200
    assert response.json()["violations"] == []
    assert response.json()["alert"] is None


def test_reading_without_site_is_rejected(api_client: TestClient) -> None:
    response = api_client.post("/readings", json={"sensor_values": {"ph": 7.0}})

    assert response.status_code == 422


def test_blank_token_is_rejected(api_client: TestClient) -> None:
    response = api_client.post("/recipients", json={"user_id": "u1", "token": "  "})

    assert response.status_code == 422


def test_recipient_count(api_client: TestClient, directory: RecipientDirectory) -> None:
    directory.register("u1", "token-a")
    directory.register("u2", None)

    response = api_client.get("/recipients/count")

    assert response.json() == {"count": 1}


def test_lifespan_shuts_down_pipeline_and_clears_cache(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("RECIPIENT_DIRECTORY_PATH", str(tmp_path / "recipients.json"))
    monkeypatch.delenv("PUSH_GATEWAY_URL", raising=False)
    caches = (
        get_settings,
        build_default_directory,
        build_default_transport,
        build_default_pipeline,
        build_default_feed,
    )
    for cache in caches:
        cache.cache_clear()

    app = create_app()
    try:
        with TestClient(app):
            pipeline_during = build_default_pipeline()
            assert pipeline_during.submit(_healthy_reading()).result(timeout=5).violations == []

        with pytest.raises(RuntimeError):
            pipeline_during.submit(_healthy_reading())
        pipeline_after = build_default_pipeline()
        assert pipeline_after is not pipeline_during
        pipeline_after.shutdown()
    finally:
        for cache in caches:
            cache.cache_clear()


def test_full_pipeline_queue_does_not_stall_other_requests(monkeypatch, directory) -> None:
    release = threading.Event()

    class SlowDirectory:
        def list_addresses(self) -> List[str]:
            release.wait(timeout=5)
            return ["token-a"]

    dispatcher = NotificationDispatcher(
        transport=MockPushTransport(),
        retry_policy=RetryPolicy(max_attempts=1, delay=0.0),
        call_timeout=None,
    )
    pipeline = AlertPipeline(
        directory=SlowDirectory(), dispatcher=dispatcher, workers=1, max_pending=1
    )
    statuses: List[int] = []

    with _serve(monkeypatch, pipeline, directory) as client:
        first = client.post("/readings", json=_reading("pond-1", dissolved_oxygen=3.0))
        waiting = threading.Thread(
            target=lambda: statuses.append(
                client.post("/readings", json=_reading("pond-2", dissolved_oxygen=3.0)).status_code
            )
        )
        waiting.start()
        time.sleep(0.2)

        start = time.perf_counter()
        health = client.get("/health")
        elapsed = time.perf_counter() - start

        release.set()
        waiting.join(timeout=5)
        assert pipeline.drain(timeout=5)

    assert first.status_code == 202
    assert health.status_code == 200
    assert elapsed < 1.0
    assert statuses == [202]
