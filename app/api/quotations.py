from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import audit_log
from app.core.config import Settings, get_settings
from app.core.enums import AuditAction, QuotationStatus
from app.core.rate_limit import check_rate_limit, client_key
from app.core.response_builders import (
    as_float,
    build_pricing_response,
    build_public_quotation_response,
    build_quotation_response,
    build_quotation_response_list,
)
from app.core.security import require_operator
from app.db.session import get_db
from app.schemas.quotation import (
    PricingOut,
    PricingRequest,
    PublicQuotationOut,
    QuotationCreate,
    QuotationCreated,
    QuotationOut,
    QuotationStatusUpdate,
)
from app.services import quotations as service

router = APIRouter(prefix="/quotations", tags=["quotations"])


@router.post("/", response_model=QuotationCreated, status_code=201)
async def create_quotation(
    payload: QuotationCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    await check_rate_limit(client_key(request))

    quotation = await service.create_quotation(db, payload, settings)
    return QuotationCreated(
        request_id=quotation.id,
        status=quotation.status,
        total_amount=as_float(quotation.total_amount),
        final_amount=as_float(quotation.final_amount),
    )


@router.get("/", response_model=List[QuotationOut])
async def list_quotations(
    status: Optional[QuotationStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    quotations = await service.list_quotations(db, status, search, limit, offset)
    return build_quotation_response_list(quotations)


@router.get("/public/{slug}", response_model=PublicQuotationOut)
async def get_public_quotation(slug: str, db: AsyncSession = Depends(get_db)):
    quotation, totals = await service.fetch_public_quotation(db, slug)
    return build_public_quotation_response(quotation, totals)


@router.get("/{quotation_id}", response_model=QuotationOut)
async def get_quotation(
    quotation_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    quotation = await service.get_quotation(db, quotation_id)
    return build_quotation_response(quotation)


@router.post("/{quotation_id}/price", response_model=PricingOut)
@audit_log(AuditAction.PRICE_QUOTATION, resource_arg="quotation_id")
async def price_quotation(
    quotation_id: int,
    payload: PricingRequest,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    quotation, totals = await service.price_quotation(db, quotation_id, payload)
    return build_pricing_response(quotation, totals)


@router.post("/{quotation_id}/send", response_model=PricingOut)
@audit_log(AuditAction.SEND_QUOTATION, resource_arg="quotation_id")
async def send_quotation(
    quotation_id: int,
    payload: PricingRequest,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
    settings: Settings = Depends(get_settings),
):
    """Price the quotation, mint its payment link and e-mail both parties"""
    await check_rate_limit(f"user:{current_user.id}")

    quotation, totals, link = await service.price_and_send(db, quotation_id, payload, settings)
    return build_pricing_response(quotation, totals, link)


@router.put("/{quotation_id}/status", response_model=QuotationOut)
@audit_log(AuditAction.UPDATE_QUOTATION_STATUS, resource_arg="quotation_id")
async def update_quotation_status(
    quotation_id: int,
    payload: QuotationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    quotation = await service.update_quotation_status(db, quotation_id, payload.status, payload.admin_notes)
    return build_quotation_response(quotation)
