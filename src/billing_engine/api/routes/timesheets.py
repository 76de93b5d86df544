"""Timesheet entry validation endpoints."""

from fastapi import APIRouter, status

from billing_engine.api.dependencies import AppSettings, DbSession
from billing_engine.api.schemas import (
    ErrorResponse,
    OverlapCheckRequest,
    OverlapCheckResponse,
    OverlapConflictResponse,
)
from billing_engine.calculators.types import CandidateEntry
from billing_engine.services.overlap_service import OverlapDetector

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


@router.post(
    "/overlaps",
    response_model=OverlapCheckResponse,
    status_code=status.HTTP_200_OK,
    responses={422: {"model": ErrorResponse}},
)
async def check_overlaps(
    db: DbSession,
    settings: AppSettings,
    payload: OverlapCheckRequest,
) -> OverlapCheckResponse:
    """Validate candidate entries against each other and the saved schedule."""
    detector = OverlapDetector(db, settings)
    conflicts = await detector.detect(
        provider_id=payload.provider_id,
        client_id=payload.client_id,
        entries=[
            CandidateEntry(
                date=entry.date,
                start_time=entry.start_time,
                end_time=entry.end_time,
                entry_type=entry.entry_type,
            )
            for entry in payload.entries
        ],
        exclude_timesheet_id=payload.exclude_timesheet_id,
        provider_name=payload.provider_name,
        client_name=payload.client_name,
    )
    return OverlapCheckResponse(
        has_conflicts=bool(conflicts),
        conflicts=[OverlapConflictResponse.model_validate(c) for c in conflicts],
    )
