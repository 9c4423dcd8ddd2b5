import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import Settings, get_settings
from app.core.enums import QuotationSource, QuotationStatus
from app.core.exceptions import ConflictError, NotFoundError, PersistenceError, ValidationError
from app.core.metrics import quotations_created
from app.models.base import utcnow
from app.models.quotation import Quotation
from app.schemas.payment import DirectLinkRequest, ShippingInfo
from app.services import email_templates
from app.services.discounts import CENT, ZERO, compute_quote_totals, money
from app.services.notifications import notify
from app.services.paypal import PayPalClient, ProcessorOrder
from app.services.quotations import (
    build_items,
    cart_lines,
    check_client_final,
    get_quotation,
    mint_slug,
    payment_link,
    to_discount_spec,
    validate_items,
)

logger = logging.getLogger(__name__)


@dataclass
class ProcessorOrderResult:
    order: ProcessorOrder
    amount: Decimal
    currency: str


@dataclass
class DirectLinkResult:
    quotation: Quotation
    total_amount: Decimal
    final_amount: Decimal
    payment_link: str
    whatsapp_link: Optional[str]


def payable_amount(quotation: Quotation) -> Decimal:
    """What the buyer pays: final amount, or goods plus shipping when unpriced."""
    if quotation.final_amount is not None:
        return money(quotation.final_amount)
    return money(quotation.total_amount) + money(quotation.shipping_cost)


def _value(amount: Decimal) -> str:
    return f"{money(amount):.2f}"


def build_purchase_unit(quotation: Quotation, amount: Decimal, currency: str) -> dict:
    """Processor purchase unit for a quotation.

    The item list is for display on the processor's checkout page; the
    breakdown is derived so that it always adds up to ``amount``.
    """
    items = []
    item_total = ZERO
    for item in quotation.items:
        snapshot = item.product_snapshot or {}
        unit = money(item.unit_price)
        item_total += unit * item.quantity
        entry = {
            "name": str(snapshot.get("name") or f"Product {item.product_id}")[:127],
            "quantity": str(item.quantity),
            "unit_amount": {"currency_code": currency, "value": _value(unit)},
        }
        if snapshot.get("sku"):
            entry["sku"] = str(snapshot["sku"])[:127]
        items.append(entry)

    shipping = money(quotation.shipping_cost)
    adjustment = money(item_total + shipping - amount)
    breakdown = {
        "item_total": {"currency_code": currency, "value": _value(item_total)},
        "shipping": {"currency_code": currency, "value": _value(shipping)},
    }
    if adjustment > 0:
        breakdown["discount"] = {"currency_code": currency, "value": _value(adjustment)}
    elif adjustment < 0:
        breakdown["handling"] = {"currency_code": currency, "value": _value(-adjustment)}

    return {
        "reference_id": str(quotation.id),
        "custom_id": str(quotation.id),
        "description": f"Quotation #{quotation.id}",
        "amount": {"currency_code": currency, "value": _value(amount), "breakdown": breakdown},
        "items": items,
    }


async def create_processor_order(
    db: AsyncSession,
    quotation_id: int,
    processor: PayPalClient,
    shipping_info: Optional[ShippingInfo] = None,
    settings: Optional[Settings] = None,
) -> ProcessorOrderResult:
    settings = settings or get_settings()
    quotation = await get_quotation(db, quotation_id)

    if quotation.status == QuotationStatus.CLOSED_WON:
        raise ConflictError("Quotation is already paid", quotation_id=quotation_id)
    if quotation.status == QuotationStatus.CLOSED_LOST:
        raise ConflictError("Quotation is closed", quotation_id=quotation_id)
    if quotation.status != QuotationStatus.SENT_TO_CLIENT:
        raise NotFoundError("Quotation not found", quotation_id=quotation_id)

    amount = payable_amount(quotation)
    if amount <= 0:
        raise ValidationError("Quotation has nothing to pay", field="final_amount")

    if shipping_info is not None:
        quotation.shipping_info = shipping_info.model_dump()
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to store shipping info for quotation {quotation_id}: {e}")
            raise PersistenceError("Could not store the shipping information")

    currency = settings.PAYPAL_CURRENCY
    order = await processor.create_order(build_purchase_unit(quotation, amount, currency))
    logger.info(f"Processor order {order.id} created for quotation {quotation_id} ({amount} {currency})")
    return ProcessorOrderResult(order=order, amount=amount, currency=currency)


def whatsapp_link(phone: Optional[str], name: str, link: str, final_amount: Decimal, settings: Settings) -> Optional[str]:
    if not phone:
        return None
    digits = re.sub(r"[\s\-()]", "", phone)
    if not digits:
        return None
    message = (
        f"🎨 *{settings.SHOP_NAME}*\n\n"
        f"Hello {name}, your order is ready for payment.\n"
        f"Total: ${money(final_amount):.2f}\n\n"
        f"Pay securely here: {link}"
    )
    return f"https://wa.me/{digits.lstrip('+')}?text={quote(message)}"


async def find_recent_direct_link(db: AsyncSession, email: str, window_seconds: int) -> Optional[Quotation]:
    since = utcnow() - timedelta(seconds=window_seconds)
    result = await db.execute(
        select(Quotation)
        .where(
            Quotation.email == email,
            Quotation.source == QuotationSource.DIRECT_PAYMENT.value,
            Quotation.created_at >= since,
        )
        .order_by(Quotation.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def create_direct_payment_link(
    db: AsyncSession,
    request: DirectLinkRequest,
    settings: Optional[Settings] = None,
) -> DirectLinkResult:
    settings = settings or get_settings()
    customer = request.customer_info

    if not customer.name.strip():
        raise ValidationError("Customer name is required", field="customer_info.name")
    if not customer.email.strip():
        raise ValidationError("Customer e-mail is required", field="customer_info.email")
    validate_items(request.cart_items, settings)

    lines = cart_lines(request.cart_items)
    goods_total = money(sum((line.line_total for line in lines), ZERO))
    totals = compute_quote_totals(
        goods_total,
        to_discount_spec(request.discount_info),
        request.shipping_cost,
        lines,
    )
    if request.total_amount is not None and abs(money(request.total_amount) - goods_total) > CENT:
        raise ValidationError(
            f"Total amount {money(request.total_amount)} does not match the cart total {goods_total}",
            field="total_amount",
            expected=str(goods_total),
        )
    check_client_final(request.final_amount, totals)
    if totals.final_amount <= 0:
        raise ValidationError("Payment amount must be positive", field="final_amount")

    email = customer.email.strip().lower()
    recent = await find_recent_direct_link(db, email, settings.DIRECT_LINK_DUPLICATE_WINDOW)
    if recent is not None:
        raise ConflictError(
            "A payment link for this customer was just created",
            quotation_id=recent.id,
        )

    items = build_items(request.cart_items)
    spec = request.discount_info
    slug = mint_slug()
    quotation = Quotation(
        status=QuotationStatus.SENT_TO_CLIENT,
        requester_name=customer.name.strip(),
        email=email,
        phone=customer.phone,
        source=QuotationSource.DIRECT_PAYMENT.value,
        channel="direct",
        discount_type=spec.type if spec else None,
        discount_value=money(spec.value) if spec else None,
        total_amount=totals.original_total,
        shipping_cost=totals.shipping_cost,
        final_amount=totals.final_amount,
        shipping_info=request.shipping_info.model_dump() if request.shipping_info else None,
        quote_slug=slug,
        responded_at=utcnow(),
        manager_notes=request.manager_notes,
        items=items,
    )

    annotations = {annotation.item_id: annotation for annotation in totals.item_discounts}
    for index, item in enumerate(items):
        annotation = annotations.get(index)
        if annotation:
            item.discount_percentage = annotation.discount_percentage
            item.discount_note = annotation.discount_note
            item.discounted_total = annotation.discounted_total

    try:
        db.add(quotation)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to store direct payment link for {email}: {e}")
        raise PersistenceError("Could not store the payment link")

    quotations_created.labels(source=quotation.source).inc()
    link = payment_link(slug, settings)
    logger.info(f"Direct payment link for quotation {quotation.id} created ({totals.final_amount})")
    notify(*email_templates.direct_payment_link(quotation, link, settings), quotation.email)

    return DirectLinkResult(
        quotation=quotation,
        total_amount=totals.original_total,
        final_amount=totals.final_amount,
        payment_link=link,
        whatsapp_link=whatsapp_link(customer.phone, quotation.requester_name, link, totals.final_amount, settings),
    )
