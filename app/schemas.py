"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class SensorValues(BaseModel):
    """Raw metric values; any omitted metric is read as zero."""

    ph: Optional[float] = None
    temperature: Optional[float] = Field(default=None, description="Degrees Celsius.")
    dissolved_oxygen: Optional[float] = Field(default=None, description="mg/L.")
    dissolved_solids: Optional[float] = Field(default=None, description="ppm.")
    turbidity: Optional[float] = Field(default=None, description="NTU.")


class ReadingIn(BaseModel):
    """A reading submitted to the change feed."""

    site_id: str = Field(..., min_length=1, description="Pond or tank identifier.")
    observed_at: Optional[datetime] = None
    sensor_values: SensorValues = Field(default_factory=SensorValues)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=False)


class ReadingAccepted(BaseModel):
    reading_id: str = Field(..., description="Identifier assigned by the feed.")


class AlertPreview(BaseModel):
    title: str
    body: str
    data: Dict[str, str] = Field(default_factory=dict)


class EvaluationResponse(BaseModel):
    """Dry-run result: what would be sent for a reading, without sending it."""

    site_id: str
    risk_score: float = Field(..., ge=0.0, le=1.0)
    violations: List[str] = Field(default_factory=list)
    alert: Optional[AlertPreview] = None


class RecipientIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    token: str = Field(..., description="Push delivery token for the user's device.")

    @field_validator("token")
    @classmethod
    def _token_not_blank(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate:
            raise ValueError("token must not be blank")
        return candidate


class RecipientCount(BaseModel):
    count: int = Field(..., ge=0)
