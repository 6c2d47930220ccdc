"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from app.schemas import (
    AlertPreview,
    EvaluationResponse,
    ReadingAccepted,
    ReadingIn,
    RecipientCount,
    RecipientIn,
)
from datastore.recipient_directory import RecipientDirectory, build_default_directory
from models.records import SensorReading
from services.pipeline import AlertPipeline, build_default_pipeline
from storage.reading_feed import ReadingFeed, build_default_feed

router = APIRouter()


def get_pipeline() -> AlertPipeline:
    return build_default_pipeline()


def get_feed() -> ReadingFeed:
    return build_default_feed()


def get_directory() -> RecipientDirectory:
    return build_default_directory()


@router.post(
    "/readings",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ReadingAccepted,
    summary="Append a reading to the feed; alerts are evaluated asynchronously.",
)
def submit_reading(
    reading: ReadingIn,
    feed: ReadingFeed = Depends(get_feed),
) -> ReadingAccepted:
    try:
        reading_id = feed.append(reading.to_document())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ReadingAccepted(reading_id=reading_id)


@router.post(
    "/readings/evaluate",
    response_model=EvaluationResponse,
    summary="Score a reading and preview its alert without notifying anyone.",
)
async def evaluate_reading(
    reading: ReadingIn,
    pipeline: AlertPipeline = Depends(get_pipeline),
) -> EvaluationResponse:
    result = pipeline.evaluate(SensorReading.from_document(reading.to_document()))
    alert = None
    if result.payload is not None:
        alert = AlertPreview(
            title=result.payload.title,
            body=result.payload.body,
            data=result.payload.data,
        )
    return EvaluationResponse(
        site_id=result.site_id,
        risk_score=result.risk_score,
        violations=result.violations,
        alert=alert,
    )


@router.post(
    "/recipients",
    status_code=status.HTTP_201_CREATED,
    response_model=RecipientCount,
    summary="Register or replace a user's push token.",
)
def register_recipient(
    recipient: RecipientIn,
    directory: RecipientDirectory = Depends(get_directory),
) -> RecipientCount:
    directory.register(recipient.user_id, recipient.token)
    return RecipientCount(count=len(directory.list_addresses()))


@router.get(
    "/recipients/count",
    response_model=RecipientCount,
    summary="Number of distinct push tokens alerts will be sent to.",
)
async def recipient_count(
    directory: RecipientDirectory = Depends(get_directory),
) -> RecipientCount:
    return RecipientCount(count=len(directory.list_addresses()))


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Liveness probe.",
    status_code=status.HTTP_200_OK,
    response_class=PlainTextResponse,
)
async def root() -> str:
    return "Listener is running"
