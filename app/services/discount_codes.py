import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.enums import DiscountType
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.discount_code import DiscountCode
from app.schemas.discount import DiscountCodeCreate, DiscountCodeUpdate
from app.schemas.quotation import QuotationItemIn
from app.services.discounts import (
    CODE_DISCOUNT_TYPES,
    HUNDRED,
    DiscountCodeTerms,
    DiscountResult,
    apply_code_terms,
    as_utc,
    check_code_availability,
    money,
)
from app.services.quotations import cart_lines, load_discount_code

logger = logging.getLogger(__name__)


async def validate_discount_code(
    db: AsyncSession,
    code: str,
    items: Sequence[QuotationItemIn],
    now: Optional[datetime] = None,
) -> DiscountResult:
    """Price a cart with a code without claiming a use of it."""
    discount_code = await load_discount_code(db, code)
    check_code_availability(discount_code, now)
    return apply_code_terms(DiscountCodeTerms.from_model(discount_code), cart_lines(items))


def _check_terms(discount_code: DiscountCode) -> None:
    if discount_code.discount_type not in CODE_DISCOUNT_TYPES:
        raise ValidationError("Discount codes are percentage or fixed amount only", field="discount_type")
    if discount_code.discount_type == DiscountType.PERCENTAGE and discount_code.discount_value > HUNDRED:
        raise ValidationError("Percentage must be between 0 and 100", field="discount_value")
    valid_until = as_utc(discount_code.valid_until)
    if valid_until is not None and as_utc(discount_code.valid_from) >= valid_until:
        raise ValidationError("valid_until must be after valid_from", field="valid_until")


async def get_discount_code(db: AsyncSession, code_id: int) -> DiscountCode:
    discount_code = await db.get(DiscountCode, code_id, populate_existing=True)
    if not discount_code:
        raise NotFoundError("Discount code not found", discount_code_id=code_id)
    return discount_code


async def list_discount_codes(
    db: AsyncSession,
    active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[DiscountCode]:
    query = select(DiscountCode).order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc())
    if active is not None:
        query = query.where(DiscountCode.is_active == active)
    result = await db.execute(query.limit(limit).offset(offset))
    return result.scalars().all()


async def _save(db: AsyncSession, discount_code: DiscountCode) -> DiscountCode:
    code = discount_code.code
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Discount code already exists", code=code)
    await db.refresh(discount_code)
    return discount_code


async def create_discount_code(db: AsyncSession, payload: DiscountCodeCreate) -> DiscountCode:
    """Codes are stored upper-case and must be unique."""
    data = payload.model_dump()
    data["code"] = data["code"].strip().upper()
    data["discount_value"] = money(data["discount_value"])
    data["min_order_amount"] = money(data["min_order_amount"])
    data["valid_from"] = data["valid_from"] or datetime.now(timezone.utc)
    discount_code = DiscountCode(**data)
    _check_terms(discount_code)

    existing = await db.execute(select(DiscountCode.id).where(DiscountCode.code == discount_code.code))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Discount code already exists", code=discount_code.code)

    db.add(discount_code)
    discount_code = await _save(db, discount_code)
    logger.info(f"Discount code {discount_code.code} created ({discount_code.discount_type} {discount_code.discount_value})")
    return discount_code


async def update_discount_code(db: AsyncSession, code_id: int, payload: DiscountCodeUpdate) -> DiscountCode:
    """Apply the fields that were sent; the merged terms are checked as a whole."""
    discount_code = await get_discount_code(db, code_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in ("discount_type", "discount_value", "valid_from", "is_active", "apply_to_all_categories",
                  "category_ids", "min_order_amount"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty", field=field)

    for field, value in changes.items():
        setattr(discount_code, field, value)
    try:
        _check_terms(discount_code)
    except ValidationError:
        await db.rollback()
        raise

    discount_code = await _save(db, discount_code)
    logger.info(f"Discount code {discount_code.code} updated: {', '.join(sorted(changes)) or 'no changes'}")
    return discount_code
