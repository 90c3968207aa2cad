"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import CycleSummary, IngestAccepted, ReadingEvent, UsageReport
from clients.directory import DirectoryError
from messaging.bus import BusError
from services.usage import UsageService, build_default_service

router = APIRouter()


def get_service() -> UsageService:
    return build_default_service()


@router.get(
    "/api/v1/usage/{user_id}",
    response_model=UsageReport,
    summary="Per-device energy usage of a user over the last N days.",
)
def get_user_usage(
    user_id: int,
    days: int = Query(3, ge=1, description="Number of days to look back."),
    service: UsageService = Depends(get_service),
) -> UsageReport:
    try:
        return service.usage_for_user(user_id, days)
    except DirectoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.post(
    "/api/v1/ingestion",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestAccepted,
    summary="Accept a raw reading and hand it to the usage topic.",
)
def ingest_reading(
    event: ReadingEvent,
    service: UsageService = Depends(get_service),
) -> IngestAccepted:
    try:
        service.ingest(event)
    except BusError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return IngestAccepted(topic=service.usage_topic, device_id=event.device_id)


@router.post(
    "/api/v1/aggregation/run",
    response_model=CycleSummary,
    summary="Run one aggregation cycle immediately.",
)
def run_aggregation(
    service: UsageService = Depends(get_service),
) -> CycleSummary:
    report = service.run_aggregation_now()
    if report is None:
        return CycleSummary(skipped=True)
    return CycleSummary(
        device_rows=report.device_rows,
        devices_retained=report.devices_retained,
        users_evaluated=report.users_evaluated,
        alerts_published=report.alerts_published,
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
