from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import audit_log
from app.core.enums import AuditAction
from app.core.exceptions import DiscountRejected
from app.core.rate_limit import check_rate_limit, client_key
from app.core.response_builders import as_float, build_discount_code_response
from app.core.security import require_operator
from app.db.session import get_db
from app.schemas.discount import (
    DiscountCodeCreate,
    DiscountCodeOut,
    DiscountCodeUpdate,
    DiscountCodeValidateOut,
    DiscountCodeValidateRequest,
)
from app.services import discount_codes as service

router = APIRouter(prefix="/discount-codes", tags=["discount-codes"])


@router.post("/", response_model=DiscountCodeOut, status_code=status.HTTP_201_CREATED)
@audit_log(AuditAction.CREATE_DISCOUNT_CODE)
async def create_discount_code(
    payload: DiscountCodeCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    discount_code = await service.create_discount_code(db, payload)
    return build_discount_code_response(discount_code)


@router.get("/", response_model=List[DiscountCodeOut])
async def list_discount_codes(
    active: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    codes = await service.list_discount_codes(db, active, limit, offset)
    return [build_discount_code_response(code) for code in codes]


@router.put("/{code_id}", response_model=DiscountCodeOut)
@audit_log(AuditAction.UPDATE_DISCOUNT_CODE, resource_arg="code_id")
async def update_discount_code(
    code_id: int,
    payload: DiscountCodeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    """Change terms or switch a code on and off"""
    discount_code = await service.update_discount_code(db, code_id, payload)
    return build_discount_code_response(discount_code)


@router.post("/validate", response_model=DiscountCodeValidateOut)
async def validate_code(
    payload: DiscountCodeValidateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    await check_rate_limit(client_key(request))

    code = payload.code.strip().upper()
    try:
        result = await service.validate_discount_code(db, code, payload.items)
    except DiscountRejected as e:
        return DiscountCodeValidateOut(valid=False, code=code, reason=e.reason, message=e.message)

    return DiscountCodeValidateOut(
        valid=True,
        code=code,
        discount_amount=as_float(result.discount_amount),
        final_amount=as_float(result.final_amount),
    )
