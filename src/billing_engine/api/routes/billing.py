"""Billing calculation and rate table endpoints."""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from billing_engine.api.dependencies import ActorId, AppSettings, DbSession, Emitter
from billing_engine.api.schemas import (
    BilledEntryResponse,
    BillEntriesRequest,
    BillEntriesResponse,
    ErrorResponse,
    RateHistoryResponse,
    RateUpdateRequest,
)
from billing_engine.calculators.billing import bill_entries
from billing_engine.calculators.clock import civil_date
from billing_engine.calculators.rate_resolver import RateResolver
from billing_engine.calculators.types import BillableEntry, RateSelection
from billing_engine.models import Insurance
from billing_engine.services.rate_service import RateTableService

router = APIRouter(tags=["billing"])


@router.post(
    "/billing/calculate",
    response_model=BillEntriesResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def calculate_billing(
    db: DbSession,
    settings: AppSettings,
    payload: BillEntriesRequest,
) -> BillEntriesResponse:
    """Bill a set of entries without persisting anything."""
    if payload.insurance_id is not None:
        insurance = await db.get(Insurance, payload.insurance_id)
        if insurance is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Insurance not found",
            )
        rate = RateResolver(settings.default_unit_minutes).resolve(insurance, payload.kind)
    else:
        rate = RateSelection(
            rate_per_unit=payload.rate_per_unit,
            unit_minutes=payload.unit_minutes,
            kind=payload.kind,
            source="explicit",
        )

    today = civil_date(datetime.now(timezone.utc), settings.civil_timezone)
    summary = bill_entries(
        [
            BillableEntry(
                minutes=entry.minutes,
                entry_type=entry.entry_type,
                service_date=entry.service_date or today,
            )
            for entry in payload.entries
        ],
        rate,
    )
    return BillEntriesResponse(
        kind=rate.kind,
        rate_per_unit=rate.rate_per_unit,
        unit_minutes=rate.unit_minutes,
        rate_source=rate.source,
        entries=[
            BilledEntryResponse(
                minutes=entry.minutes,
                entry_type=entry.entry_type,
                units=billed.units,
                billable_units=billed.billable_units,
                amount=billed.amount,
            )
            for entry, billed in summary.results
        ],
        total_minutes=summary.total_minutes,
        total_units=summary.total_units,
        billable_units=summary.billable_units,
        total_amount=summary.total_amount,
    )


@router.patch(
    "/insurances/{insurance_id}/rates",
    response_model=list[RateHistoryResponse],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_rates(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    insurance_id: Annotated[UUID, Path()],
    payload: RateUpdateRequest,
) -> list[RateHistoryResponse]:
    """Change payer rates for future invoices; returns the history rows added."""
    service = RateTableService(db, emitter)
    history = await service.update_rates(
        insurance_id,
        payload.model_dump(exclude_unset=True),
        actor_id,
    )
    await db.commit()
    return [RateHistoryResponse.model_validate(row) for row in history]


@router.get(
    "/insurances/{insurance_id}/rates/history",
    response_model=list[RateHistoryResponse],
)
async def get_rate_history(
    db: DbSession,
    insurance_id: Annotated[UUID, Path()],
) -> list[RateHistoryResponse]:
    """List rate changes for a payer, oldest first."""
    history = await RateTableService(db).get_history(insurance_id)
    return [RateHistoryResponse.model_validate(row) for row in history]
