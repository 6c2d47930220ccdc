"""Threshold rules that decide whether a reading raises an alert."""

from __future__ import annotations

from typing import List, Sequence

from models.records import AlertPayload, SensorReading, format_metric

OXYGEN_RANGE = (5.0, 8.0)
PH_RANGE = (6.5, 7.5)
TEMPERATURE_RANGE = (20.0, 25.0)
SOLIDS_MAX = 400.0
TURBIDITY_MAX = 400.0
RISK_MAX = 0.02

BODY_SEPARATOR = " | "


def _outside(value: float, bounds: tuple[float, float]) -> bool:
    low, high = bounds
    return value < low or value > high


class ThresholdEvaluator:
    """Produce human-readable violations in a fixed, user-visible order.

    Rules run oxygen, pH, temperature, dissolved solids, turbidity, then
    risk score. Bounds are exclusive: a value exactly on a limit is safe.
    """

    def evaluate(self, reading: SensorReading, risk_score: float) -> List[str]:
        violations: List[str] = []

        if _outside(reading.dissolved_oxygen, OXYGEN_RANGE):
            violations.append(
                f"Oxygen out of range: {format_metric(reading.dissolved_oxygen)} mg/L"
            )
        if _outside(reading.ph, PH_RANGE):
            violations.append(f"pH out of range: {format_metric(reading.ph)}")
        if _outside(reading.temperature, TEMPERATURE_RANGE):
            violations.append(
                f"Temperature out of range: {format_metric(reading.temperature)} °C"
            )
        if reading.dissolved_solids > SOLIDS_MAX:
            violations.append(
                f"Dissolved solids too high: {format_metric(reading.dissolved_solids)} ppm"
            )
        if reading.turbidity > TURBIDITY_MAX:
            violations.append(
                f"Turbidity too high: {format_metric(reading.turbidity)} NTU"
            )
        if risk_score > RISK_MAX:
            violations.append(f"Estimated ammonia elevated: {risk_score:.3f} mg/L")

        return violations


def build_alert_payload(
    reading: SensorReading, risk_score: float, violations: Sequence[str]
) -> AlertPayload:
    """Assemble the notification sent to recipients for an alerting reading."""

    if not violations:
        raise ValueError("Cannot build an alert payload without violations.")

    return AlertPayload(
        title=f"⚠️ Alert at {reading.site_id}",
        body=BODY_SEPARATOR.join(violations),
        data={
            "siteId": reading.site_id,
            "oxygen": format_metric(reading.dissolved_oxygen),
            "ph": format_metric(reading.ph),
            "temperature": format_metric(reading.temperature),
            "dissolvedSolids": format_metric(reading.dissolved_solids),
            "turbidity": format_metric(reading.turbidity),
            "riskScore": f"{risk_score:.3f}",
        },
    )
