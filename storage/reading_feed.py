from __future__ import annotations
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from models.records import SensorReading

logger = logging.getLogger(__name__)

ADDED = "added"

_OrderKey = Tuple[datetime, int]


@dataclass(frozen=True)
class ChangeEvent:
    type: str
    document_id: str
    reading: SensorReading


EventHandler = Callable[[ChangeEvent], Any]


class Subscription:

    def __init__(self, feed: "ReadingFeed", handler: EventHandler, latest_only: bool) -> None:
        self._feed = feed
        self.handler = handler
        self.latest_only = latest_only
        self.active = True

    def cancel(self) -> None:
        self.active = False
        self._feed._remove(self)


class ReadingFeed:
    """Append-mostly collection of sensor readings with change subscriptions.

    New subscribers first receive every stored reading as an ``added`` event,
    then each reading appended afterwards. In latest-only mode a subscriber
    sees only the most recent reading by ``observed_at``. A reading without a
    timestamp is ordered by the time it was appended; arrival order breaks ties.
    """

    def __init__(self, name: str = "sensor_readings") -> None:
        self.name = name
        self._documents: Dict[str, Tuple[_OrderKey, SensorReading]] = {}
        self._subscribers: List[Subscription] = []
        self._sequence = itertools.count()
        self._newest: Optional[_OrderKey] = None
        self._lock = Lock()

    def append(self, document: Mapping[str, Any]) -> str:
        if not isinstance(document, Mapping):
            raise ValueError("Reading document must be a mapping.")

        reading = SensorReading.from_document(document)
        document_id = uuid4().hex
        with self._lock:
            received_at = datetime.now(timezone.utc)
            key = (reading.observed_at or received_at, next(self._sequence))
            self._documents[document_id] = (key, reading)
            is_newest = self._newest is None or key >= self._newest
            if is_newest:
                self._newest = key
            subscribers = list(self._subscribers)

        event = ChangeEvent(type=ADDED, document_id=document_id, reading=reading)
        for subscription in subscribers:
            if subscription.latest_only and not is_newest:
                continue
            self._deliver(subscription, event)
        return document_id

    def subscribe(self, handler: EventHandler, latest_only: bool = False) -> Subscription:
        subscription = Subscription(self, handler, latest_only)
        with self._lock:
            existing = sorted(self._documents.items(), key=lambda item: item[1][0])
            self._subscribers.append(subscription)

        if latest_only:
            existing = existing[-1:]
        for document_id, (_key, reading) in existing:
            self._deliver(
                subscription,
                ChangeEvent(type=ADDED, document_id=document_id, reading=reading),
            )
        return subscription

    def get(self, document_id: str) -> SensorReading:
        with self._lock:
            entry = self._documents.get(document_id)
        if entry is None:
            raise KeyError(f"Reading {document_id!r} not found in feed {self.name!r}.")
        return entry[1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @staticmethod
    def _deliver(subscription: Subscription, event: ChangeEvent) -> None:
        if not subscription.active:
            return
        try:
            subscription.handler(event)
        except Exception:
            logger.exception(
                "Feed subscriber failed to handle event",
                extra={"reading_id": event.document_id, "site_id": event.reading.site_id},
            )


@lru_cache
def build_default_feed() -> ReadingFeed:
    return ReadingFeed()
