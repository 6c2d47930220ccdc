"""Domain models shared across services."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

UNKNOWN_SITE = "unknown"

# Feed document keys for each metric, in the order alerts are evaluated.
METRIC_FIELDS = (
    "dissolved_oxygen",
    "ph",
    "temperature",
    "dissolved_solids",
    "turbidity",
)


def format_metric(value: float) -> str:
    """Render a metric in its shortest form: ``3`` rather than ``3.0``."""

    if math.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _coerce_metric(name: str, raw: Any, site_id: str) -> float:
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        candidate = raw.strip()
        if not candidate:
            return 0.0
        try:
            return float(candidate)
        except ValueError:
            pass
    logger.warning(
        "Non-numeric %s value treated as absent",
        name,
        extra={"site_id": site_id, "invalid_value": repr(raw)},
    )
    return 0.0


def _parse_observed_at(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str):
        candidate = raw.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            logger.warning(
                "Ignoring unparseable observed_at", extra={"invalid_value": raw}
            )
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single multi-sensor water-quality reading for one pond or tank."""

    site_id: str = UNKNOWN_SITE
    ph: float = 0.0
    temperature: float = 0.0
    dissolved_oxygen: float = 0.0
    dissolved_solids: float = 0.0
    turbidity: float = 0.0
    observed_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "SensorReading":
        """Build a reading from a feed document.

        Absent metrics default to ``0``; a zero oxygen or pH reading is
        itself out of range, so a document with missing values still alerts.
        """

        site_id = str(document.get("site_id") or UNKNOWN_SITE)
        values = document.get("sensor_values")
        if not isinstance(values, Mapping):
            values = {}

        metrics = {
            name: _coerce_metric(name, values.get(name), site_id)
            for name in METRIC_FIELDS
        }
        return cls(
            site_id=site_id,
            observed_at=_parse_observed_at(document.get("observed_at")),
            **metrics,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
            "sensor_values": {name: getattr(self, name) for name in METRIC_FIELDS},
        }


@dataclass(frozen=True)
class AlertPayload:
    """Push notification content for a reading that breached thresholds."""

    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
