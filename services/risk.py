"""Risk estimation for water-quality readings."""

from __future__ import annotations

from models.records import SensorReading

BASELINE_RISK = 0.01

PH_LIMIT = 7.5
TEMPERATURE_LIMIT = 25.0
OXYGEN_FLOOR = 5.0
SOLIDS_LIMIT = 300.0
TURBIDITY_LIMIT = 10.0


class RiskEstimator:
    """Pure estimator of dissolved ammonia risk (mg/L), clamped to ``[0, 1]``.

    Each metric contributes an independent, one-sided penalty once it moves
    past its dead band; being on the good side of a band contributes nothing.
    """

    def estimate(self, reading: SensorReading) -> float:
        risk = BASELINE_RISK

        if reading.ph > PH_LIMIT:
            risk += 0.005 * (reading.ph - PH_LIMIT)
        if reading.temperature > TEMPERATURE_LIMIT:
            risk += 0.003 * (reading.temperature - TEMPERATURE_LIMIT)
        if reading.dissolved_oxygen < OXYGEN_FLOOR:
            risk += 0.005 * (OXYGEN_FLOOR - reading.dissolved_oxygen)
        if reading.dissolved_solids > SOLIDS_LIMIT:
            risk += 0.002 * ((reading.dissolved_solids - SOLIDS_LIMIT) / 100)
        if reading.turbidity > TURBIDITY_LIMIT:
            risk += 0.001 * (reading.turbidity - TURBIDITY_LIMIT)

        return min(max(risk, 0.0), 1.0)
