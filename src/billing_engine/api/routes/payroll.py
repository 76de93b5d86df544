"""Payroll run endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from billing_engine.api.dependencies import ActorId, AppSettings, DbSession, Emitter
from billing_engine.api.schemas import (
    ErrorResponse,
    PayrollPaymentCreate,
    PayrollPaymentResponse,
    PayrollRunCreate,
    PayrollRunLineResponse,
    PayrollRunResponse,
)
from billing_engine.models import PayrollRunLine
from billing_engine.services.payroll_service import PayrollRunService

router = APIRouter(prefix="/payroll-runs", tags=["payroll"])


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def build_payroll_run(
    db: DbSession,
    settings: AppSettings,
    actor_id: ActorId,
    emitter: Emitter,
    payload: PayrollRunCreate,
) -> PayrollRunResponse:
    """Build a payroll run from imported clock rows."""
    service = PayrollRunService(db, emitter, settings)
    result = await service.build_run(
        name=payload.name,
        period_start=payload.period_start,
        period_end=payload.period_end,
        import_id=payload.import_id,
        row_ids=payload.row_ids,
        rate_overrides=payload.rate_overrides,
        overtime_rate_overrides=payload.overtime_rate_overrides,
        actor_id=actor_id,
    )
    await db.commit()
    return PayrollRunResponse(
        run_id=result.run.run_id,
        name=result.run.name,
        period_start=result.run.period_start,
        period_end=result.run.period_end,
        status=result.run.status,
        lines=[PayrollRunLineResponse.model_validate(line) for line in result.lines],
        linked_count=result.linked_count,
        unlinked_count=result.unlinked_count,
    )


@router.get(
    "/{run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    db: DbSession,
    run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Get a payroll run with its lines."""
    run = await PayrollRunService(db).get_run(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payroll run not found",
        )
    return PayrollRunResponse(
        run_id=run.run_id,
        name=run.name,
        period_start=run.period_start,
        period_end=run.period_end,
        status=run.status,
        lines=[PayrollRunLineResponse.model_validate(line) for line in run.lines],
    )


@router.post(
    "/{run_id}/payments",
    response_model=PayrollPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def record_payroll_payment(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    run_id: Annotated[UUID, Path()],
    payload: PayrollPaymentCreate,
) -> PayrollPaymentResponse:
    """Pay an employee's line in a run."""
    service = PayrollRunService(db, emitter)
    payment = await service.record_payment(
        run_id,
        amount=payload.amount,
        paid_at=payload.paid_at,
        method=payload.method,
        employee_id=payload.employee_id,
        line_id=payload.line_id,
        reference=payload.reference,
        notes=payload.notes,
        actor_id=actor_id,
    )
    line = await db.get(PayrollRunLine, payment.line_id)
    run = await service.get_run(run_id)
    response = PayrollPaymentResponse(
        payment_id=payment.payment_id,
        run_id=run_id,
        line_id=payment.line_id,
        employee_id=payment.employee_id,
        amount=payment.amount,
        run_status=run.status,
        amount_owed=line.amount_owed,
    )
    await db.commit()
    return response
