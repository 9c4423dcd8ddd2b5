import logging
import secrets
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from app.core.config import Settings, get_settings
from app.core.enums import (
    PUBLIC_QUOTATION_STATUSES,
    QUOTATION_TRANSITIONS,
    QuotationSource,
    QuotationStatus,
)
from app.core.exceptions import ConflictError, DiscountRejected, NotFoundError, PersistenceError, ValidationError
from app.core.metrics import quotations_created
from app.models.base import utcnow
from app.models.discount_code import DiscountCode
from app.models.quotation import Quotation, QuotationItem
from app.schemas.quotation import DiscountSpecIn, PricingRequest, QuotationCreate, QuotationItemIn
from app.services import email_templates
from app.services.discounts import (
    CENT,
    USAGE_LIMIT_REACHED,
    ZERO,
    DiscountCodeTerms,
    DiscountSpec,
    LineContext,
    QuoteTotals,
    apply_code_terms,
    check_code_availability,
    compute_quote_totals,
    money,
)
from app.services.notifications import notify

logger = logging.getLogger(__name__)

UNKNOWN_CODE = "unknown_code"


def payment_link(slug: str, settings: Settings) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/quote/{slug}"


def mint_slug() -> str:
    return secrets.token_urlsafe(16)


def validate_items(items: Sequence[QuotationItemIn], settings: Settings) -> None:
    if not items:
        raise ValidationError("At least one item is required", field="items")
    if len(items) > settings.MAX_QUOTATION_ITEMS:
        raise ValidationError(
            f"A quotation can hold at most {settings.MAX_QUOTATION_ITEMS} items", field="items"
        )
    for index, item in enumerate(items):
        if item.quantity is None or item.quantity <= 0:
            raise ValidationError("Quantity must be positive", field=f"items[{index}].quantity")
        if not item.product_snapshot or not (item.product_snapshot.name or "").strip():
            raise ValidationError("Product name is required", field=f"items[{index}].product_snapshot.name")


def build_items(items: Sequence[QuotationItemIn]) -> List[QuotationItem]:
    return [
        QuotationItem(
            product_id=item.product_id,
            category_id=item.category_id,
            quantity=item.quantity,
            unit_price=money(item.product_snapshot.unit_price),
            product_snapshot=item.product_snapshot.model_dump(mode="json"),
        )
        for item in items
    ]


def cart_lines(items: Sequence[QuotationItemIn]) -> List[LineContext]:
    """Line contexts for a cart that has not been persisted yet."""
    return [
        LineContext(
            item_id=index,
            unit_price=money(item.product_snapshot.unit_price),
            quantity=item.quantity,
            category_id=item.category_id,
        )
        for index, item in enumerate(items)
    ]


def item_lines(items: Sequence[QuotationItem]) -> List[LineContext]:
    return [
        LineContext(
            item_id=item.id,
            unit_price=money(item.unit_price),
            quantity=item.quantity,
            category_id=item.category_id,
        )
        for item in items
    ]


def to_discount_spec(discount: Optional[DiscountSpecIn]) -> Optional[DiscountSpec]:
    if discount is None:
        return None
    return DiscountSpec(
        type=discount.type,
        value=discount.value,
        product_discounts=dict(discount.product_discounts or {}),
        max_discount=discount.max_discount,
    )


def check_client_final(client_final: Optional[Decimal], totals: QuoteTotals) -> None:
    if client_final is None:
        return
    if abs(money(client_final) - totals.final_amount) > CENT:
        raise ValidationError(
            f"Final amount {money(client_final)} does not match computed {totals.final_amount}",
            field="final_amount",
            expected=str(totals.final_amount),
        )


async def load_discount_code(db: AsyncSession, code: str) -> DiscountCode:
    result = await db.execute(select(DiscountCode).where(DiscountCode.code == code.strip().upper()))
    discount_code = result.scalar_one_or_none()
    if not discount_code:
        raise DiscountRejected(UNKNOWN_CODE, "Discount code not found", field="discount_code")
    return discount_code


async def claim_discount_code(db: AsyncSession, discount_code: DiscountCode) -> None:
    """Count one use of the code unless another request took the last one."""
    result = await db.execute(
        update(DiscountCode)
        .where(
            DiscountCode.id == discount_code.id,
            DiscountCode.is_active.is_(True),
            or_(DiscountCode.usage_limit.is_(None), DiscountCode.used_count < DiscountCode.usage_limit),
        )
        .values(used_count=DiscountCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise DiscountRejected(USAGE_LIMIT_REACHED, "Discount code usage limit reached", field="discount_code")


async def create_quotation(db: AsyncSession, payload: QuotationCreate, settings: Optional[Settings] = None) -> Quotation:
    settings = settings or get_settings()

    if not (payload.requester_name or "").strip():
        raise ValidationError("Requester name is required", field="requester_name")
    validate_items(payload.items, settings)

    lines = cart_lines(payload.items)
    total = money(sum((line.line_total for line in lines), ZERO))
    final = total
    code_snapshot = None

    discount_code = None
    if payload.discount_code:
        discount_code = await load_discount_code(db, payload.discount_code)
        check_code_availability(discount_code)
        terms = DiscountCodeTerms.from_model(discount_code)
        result = apply_code_terms(terms, lines)
        code_snapshot = terms.to_snapshot(result.discount_amount)
        final = result.final_amount

    quotation = Quotation(
        status=QuotationStatus.RECEIVED,
        requester_name=payload.requester_name.strip(),
        organization=payload.organization,
        email=payload.email,
        phone=payload.phone,
        notes=payload.notes,
        source=QuotationSource.WEB.value,
        locale=payload.locale,
        channel=payload.channel,
        discount_code_applied=code_snapshot,
        total_amount=total,
        final_amount=final,
        shipping_cost=ZERO,
        items=build_items(payload.items),
    )

    try:
        if discount_code is not None:
            await claim_discount_code(db, discount_code)
        db.add(quotation)
        await db.commit()
    except DiscountRejected:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to store quotation for {payload.email}: {e}")
        raise PersistenceError("Could not store the quotation")

    quotations_created.labels(source=quotation.source).inc()
    logger.info(f"Quotation {quotation.id} created with {len(quotation.items)} items, total {total}")

    notify(*email_templates.quotation_received(quotation, settings), quotation.email)
    notify(*email_templates.new_quotation_request(quotation, settings), settings.OPERATOR_EMAIL)
    return quotation


async def get_quotation(db: AsyncSession, quotation_id: int) -> Quotation:
    result = await db.execute(
        select(Quotation)
        .options(selectinload(Quotation.items))
        .where(Quotation.id == quotation_id)
        .execution_options(populate_existing=True)
    )
    quotation = result.scalar_one_or_none()
    if not quotation:
        raise NotFoundError("Quotation not found", quotation_id=quotation_id)
    return quotation


async def list_quotations(
    db: AsyncSession,
    status: Optional[QuotationStatus] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Quotation]:
    query = select(Quotation).options(selectinload(Quotation.items))
    if status:
        query = query.where(Quotation.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(Quotation.requester_name.ilike(pattern), Quotation.email.ilike(pattern)))
    query = query.order_by(Quotation.created_at.desc(), Quotation.id.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


def quote_totals(quotation: Quotation, pricing: PricingRequest) -> QuoteTotals:
    lines = item_lines(quotation.items)
    total = money(quotation.total_amount) if quotation.total_amount else money(
        sum((line.line_total for line in lines), ZERO)
    )

    code_discount = ZERO
    if quotation.discount_code_applied:
        terms = DiscountCodeTerms.from_snapshot(quotation.discount_code_applied)
        code_discount = apply_code_terms(terms, lines, skip_min_order=True).discount_amount

    return compute_quote_totals(
        total,
        to_discount_spec(pricing.discount),
        pricing.shipping_cost,
        lines,
        code_discount,
    )


async def _store_pricing(
    db: AsyncSession,
    quotation: Quotation,
    pricing: PricingRequest,
    totals: QuoteTotals,
    target: QuotationStatus,
    **values,
) -> Quotation:
    prior = quotation.status
    spec = pricing.discount
    result = await db.execute(
        update(Quotation)
        .where(Quotation.id == quotation.id, Quotation.status == prior)
        .values(
            status=target,
            discount_type=spec.type if spec else None,
            discount_value=money(spec.value) if spec else None,
            total_amount=totals.original_total,
            shipping_cost=totals.shipping_cost,
            final_amount=totals.final_amount,
            manager_notes=pricing.manager_notes if pricing.manager_notes is not None else quotation.manager_notes,
            updated_at=utcnow(),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Quotation changed while it was being priced", quotation_id=quotation.id)

    annotations = {annotation.item_id: annotation for annotation in totals.item_discounts}
    for item in quotation.items:
        annotation = annotations.get(item.id)
        item.discount_percentage = annotation.discount_percentage if annotation else None
        item.discount_note = annotation.discount_note if annotation else None
        item.discounted_total = annotation.discounted_total if annotation else None

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to store pricing for quotation {quotation.id}: {e}")
        raise PersistenceError("Could not store the quotation pricing")

    return await get_quotation(db, quotation.id)


async def price_quotation(db: AsyncSession, quotation_id: int, pricing: PricingRequest) -> Tuple[Quotation, QuoteTotals]:
    quotation = await get_quotation(db, quotation_id)
    if quotation.status not in (QuotationStatus.RECEIVED, QuotationStatus.PRICED):
        raise ConflictError(f"Quotation is already {quotation.status}", quotation_id=quotation_id)

    totals = quote_totals(quotation, pricing)
    check_client_final(pricing.final_amount, totals)

    quotation = await _store_pricing(db, quotation, pricing, totals, QuotationStatus.PRICED)
    logger.info(f"Quotation {quotation_id} priced at {totals.final_amount}")
    return quotation, totals


async def price_and_send(
    db: AsyncSession,
    quotation_id: int,
    pricing: PricingRequest,
    settings: Optional[Settings] = None,
) -> Tuple[Quotation, QuoteTotals, str]:
    settings = settings or get_settings()
    quotation = await get_quotation(db, quotation_id)
    if quotation.status == QuotationStatus.SENT_TO_CLIENT:
        raise ConflictError("Quotation was already sent to the client", quotation_id=quotation_id)
    if quotation.status not in (QuotationStatus.RECEIVED, QuotationStatus.PRICED):
        raise ConflictError(f"Quotation is already {quotation.status}", quotation_id=quotation_id)

    totals = quote_totals(quotation, pricing)
    check_client_final(pricing.final_amount, totals)

    slug = mint_slug()
    quotation = await _store_pricing(
        db,
        quotation,
        pricing,
        totals,
        QuotationStatus.SENT_TO_CLIENT,
        quote_slug=slug,
        responded_at=utcnow(),
    )
    link = payment_link(slug, settings)
    logger.info(f"Quotation {quotation_id} sent to client at {totals.final_amount}")

    notify(*email_templates.quotation_ready(quotation, totals, link, settings), quotation.email)
    notify(*email_templates.quotation_sent(quotation, totals, link, settings), settings.OPERATOR_EMAIL)
    return quotation, totals, link


def stored_totals(quotation: Quotation) -> QuoteTotals:
    """Price breakdown from the stored money fields, without touching the store."""
    total = money(quotation.total_amount)
    if not quotation.total_amount:
        total = money(sum(
            (money((item.product_snapshot or {}).get("unit_price", item.unit_price)) * item.quantity
             for item in quotation.items),
            ZERO,
        ))
        logger.warning(f"Quotation {quotation.id} has no stored total, recomputed {total} from its items")

    shipping = money(quotation.shipping_cost)
    final = money(quotation.final_amount) if quotation.final_amount is not None else total + shipping
    return QuoteTotals(
        original_total=total,
        discount_amount=money(total + shipping - final),
        shipping_cost=shipping,
        final_amount=final,
    )


async def fetch_public_quotation(db: AsyncSession, slug: str) -> Tuple[Quotation, QuoteTotals]:
    result = await db.execute(
        select(Quotation).options(selectinload(Quotation.items)).where(Quotation.quote_slug == slug)
    )
    quotation = result.scalar_one_or_none()
    if not quotation or quotation.status not in PUBLIC_QUOTATION_STATUSES:
        raise NotFoundError("Quotation not found")
    return quotation, stored_totals(quotation)


async def update_quotation_status(
    db: AsyncSession,
    quotation_id: int,
    target: QuotationStatus,
    admin_notes: Optional[str] = None,
) -> Quotation:
    quotation = await get_quotation(db, quotation_id)
    if target == QuotationStatus.SENT_TO_CLIENT:
        raise ValidationError("Use the send operation to release a quotation", field="status")
    if target == QuotationStatus.CLOSED_WON:
        raise ValidationError("Quotations are won through payment or a sold order", field="status")
    if target not in QUOTATION_TRANSITIONS[quotation.status]:
        raise ConflictError(
            f"Cannot move quotation from {quotation.status} to {target}",
            quotation_id=quotation_id,
        )

    values = {"status": target, "updated_at": utcnow()}
    if admin_notes is not None:
        values["admin_notes"] = admin_notes
    result = await db.execute(
        update(Quotation)
        .where(Quotation.id == quotation_id, Quotation.status == quotation.status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Quotation status changed concurrently", quotation_id=quotation_id)
    await db.commit()

    logger.info(f"Quotation {quotation_id} moved from {quotation.status} to {target}")
    return await get_quotation(db, quotation_id)
