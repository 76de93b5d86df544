"""Invoice generation, lifecycle and ledger endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from billing_engine.api.dependencies import ActorId, AppSettings, DbSession, Emitter, SessionFactory
from billing_engine.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    ErrorResponse,
    GenerateInvoicesRequest,
    GenerationSummaryResponse,
    GroupOutcomeResponse,
    InvoiceResponse,
    PaymentCreate,
    PaymentResponse,
)
from billing_engine.calculators.types import BillingPeriod
from billing_engine.services.invoice_generator import InvoiceGenerator
from billing_engine.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


# ============================================================================
# Generation
# ============================================================================


@router.post(
    "/generate",
    response_model=GenerationSummaryResponse,
    status_code=status.HTTP_200_OK,
)
async def generate_invoices(
    session_factory: SessionFactory,
    settings: AppSettings,
    actor_id: ActorId,
    emitter: Emitter,
    payload: GenerateInvoicesRequest,
) -> GenerationSummaryResponse:
    """Generate DRAFT invoices for a billing period. Safe to re-run."""
    period = None
    if payload.period_start is not None and payload.period_end is not None:
        period = BillingPeriod(start=payload.period_start, end=payload.period_end)

    generator = InvoiceGenerator(session_factory, emitter=emitter, settings=settings)
    summary = await generator.generate(
        period=period,
        kind=payload.kind,
        client_id=payload.client_id,
        insurance_id=payload.insurance_id,
        timesheet_ids=payload.timesheet_ids,
        actor_id=actor_id,
    )
    return GenerationSummaryResponse(
        period_start=summary.period.start,
        period_end=summary.period.end,
        kind=summary.kind,
        created=[GroupOutcomeResponse.model_validate(o) for o in summary.created],
        skipped=[GroupOutcomeResponse.model_validate(o) for o in summary.skipped],
        errors=summary.errors,
        created_count=summary.created_count,
        skipped_count=summary.skipped_count,
        success=summary.success,
    )


# ============================================================================
# Lifecycle
# ============================================================================


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    db: DbSession,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Get an invoice with its lines."""
    invoice = await InvoiceService(db).get_invoice(invoice_id, load_entries=True)
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/approve",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_invoice(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Approve a DRAFT invoice."""
    service = InvoiceService(db, emitter)
    await service.approve(invoice_id, actor_id)
    await db.commit()
    return await _invoice_response(service, invoice_id)


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def send_invoice(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Mark an invoice as sent."""
    service = InvoiceService(db, emitter)
    await service.send(invoice_id, actor_id)
    await db.commit()
    return await _invoice_response(service, invoice_id)


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_invoice(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    invoice_id: Annotated[UUID, Path()],
) -> None:
    """Soft-delete a DRAFT invoice."""
    await InvoiceService(db, emitter).soft_delete(invoice_id, actor_id)
    await db.commit()


# ============================================================================
# Ledger
# ============================================================================


@router.post(
    "/{invoice_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def record_payment(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    invoice_id: Annotated[UUID, Path()],
    payload: PaymentCreate,
) -> PaymentResponse:
    """Record a payment; the invoice balance is updated in the same transaction."""
    service = InvoiceService(db, emitter)
    payment = await service.record_payment(
        invoice_id,
        amount=payload.amount,
        payment_date=payload.payment_date,
        reference_number=payload.reference_number,
        notes=payload.notes,
        actor_id=actor_id,
    )
    invoice = await service.get_invoice(invoice_id)
    response = PaymentResponse(
        payment_id=payment.payment_id,
        invoice_id=invoice_id,
        amount=payment.amount,
        payment_date=payment.payment_date,
        invoice_status=invoice.status,
        paid_amount=invoice.paid_amount,
        outstanding=invoice.outstanding,
    )
    await db.commit()
    return response


@router.post(
    "/{invoice_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def record_adjustment(
    db: DbSession,
    actor_id: ActorId,
    emitter: Emitter,
    invoice_id: Annotated[UUID, Path()],
    payload: AdjustmentCreate,
) -> AdjustmentResponse:
    """Record a signed adjustment to the invoice balance."""
    service = InvoiceService(db, emitter)
    adjustment = await service.record_adjustment(
        invoice_id,
        amount=payload.amount,
        reason=payload.reason,
        actor_id=actor_id,
    )
    invoice = await service.get_invoice(invoice_id)
    response = AdjustmentResponse(
        adjustment_id=adjustment.adjustment_id,
        invoice_id=invoice_id,
        amount=adjustment.amount,
        reason=adjustment.reason,
        invoice_status=invoice.status,
        adjustments=invoice.adjustments,
        outstanding=invoice.outstanding,
    )
    await db.commit()
    return response


async def _invoice_response(service: InvoiceService, invoice_id: UUID) -> InvoiceResponse:
    invoice = await service.get_invoice(invoice_id, load_entries=True)
    return InvoiceResponse.model_validate(invoice)
