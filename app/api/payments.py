from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import audit_log
from app.core.config import Settings, get_settings
from app.core.enums import AuditAction
from app.core.rate_limit import check_rate_limit, client_key
from app.core.response_builders import as_float
from app.core.security import require_operator
from app.db.session import get_db
from app.schemas.payment import (
    CaptureOut,
    CaptureRequest,
    DirectLinkOut,
    DirectLinkRequest,
    ProcessorOrderOut,
    ProcessorOrderRequest,
)
from app.services.capture import CaptureOutcome, capture_payment, settle_capture
from app.services.payments import create_direct_payment_link, create_processor_order
from app.services.paypal import PayPalClient, get_processor
from app.utils.idempotency import get_idempotent, set_idempotent

router = APIRouter(prefix="/payments", tags=["payments"])


def _capture_response(outcome: CaptureOutcome) -> CaptureOut:
    return CaptureOut(
        status="COMPLETED",
        settled=outcome.settled,
        order_id=outcome.order.id if outcome.order else None,
        capture_id=outcome.capture_id,
        processor_order_id=outcome.processor_order_id,
        total_amount=as_float(outcome.amount),
    )


@router.post("/orders", response_model=ProcessorOrderOut)
async def create_order(
    payload: ProcessorOrderRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: PayPalClient = Depends(get_processor),
    settings: Settings = Depends(get_settings),
):
    await check_rate_limit(client_key(request))

    result = await create_processor_order(db, payload.quotation_id, processor, payload.shipping_info, settings)
    return ProcessorOrderOut(
        processor_order_id=result.order.id,
        status=result.order.status,
        amount=as_float(result.amount),
        currency=result.currency,
        approve_url=result.order.approve_url,
    )


@router.post("/capture", response_model=CaptureOut)
async def capture(
    payload: CaptureRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: PayPalClient = Depends(get_processor),
    settings: Settings = Depends(get_settings),
):
    await check_rate_limit(client_key(request))

    outcome = await capture_payment(
        db,
        payload.processor_order_id,
        payload.quotation_id,
        processor,
        payload.shipping_info,
        settings,
    )
    return _capture_response(outcome)


@router.post("/direct-links", response_model=DirectLinkOut)
@audit_log(AuditAction.CREATE_DIRECT_LINK)
async def create_direct_link(
    payload: DirectLinkRequest,
    idempotency_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
    settings: Settings = Depends(get_settings),
):
    await check_rate_limit(f"user:{current_user.id}")

    if idempotency_key:
        prev = await get_idempotent(idempotency_key, scope="direct-link")
        if prev:
            return DirectLinkOut(**prev)

    result = await create_direct_payment_link(db, payload, settings)
    out = DirectLinkOut(
        quotation_id=result.quotation.id,
        quote_slug=result.quotation.quote_slug,
        total_amount=as_float(result.total_amount),
        final_amount=as_float(result.final_amount),
        payment_link=result.payment_link,
        whatsapp_link=result.whatsapp_link,
    )

    if idempotency_key:
        await set_idempotent(idempotency_key, out.model_dump(), scope="direct-link")
    return out


@router.post("/captures/{capture_id}/settle", response_model=CaptureOut)
@audit_log(AuditAction.SETTLE_CAPTURE)
async def settle(
    capture_id: str,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
    settings: Settings = Depends(get_settings),
):
    outcome = await settle_capture(db, capture_id, settings)
    return _capture_response(outcome)
