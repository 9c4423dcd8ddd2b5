"""Capture a buyer-approved processor order and turn the quotation into an order.

A completed capture is recorded first, then settled in a single transaction:
quotation closed as won, order and order items written, capture marked
settled. If settlement fails the capture record stays behind so that
``settle_capture`` can finish the job later.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import Settings, get_settings
from app.core.enums import CaptureStatus, OrderStatus, PaymentStatus, QuotationStatus
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ProcessorRejected,
    SettlementError,
    ValidationError,
)
from app.core.metrics import settlements, split_brain
from app.models.base import utcnow
from app.models.order import Order, OrderItem
from app.models.payment_capture import PaymentCapture
from app.models.quotation import Quotation
from app.schemas.payment import ShippingInfo
from app.services import email_templates
from app.services.discounts import ZERO, money
from app.services.notifications import notify
from app.services.orders import get_order
from app.services.payments import payable_amount
from app.services.paypal import PayPalClient
from app.services.quotations import get_quotation

logger = logging.getLogger(__name__)


@dataclass
class CaptureOutcome:
    capture_id: str
    processor_order_id: str
    amount: Decimal
    settled: bool
    order: Optional[Order] = None


def shipping_address(shipping: Optional[dict], settings: Settings) -> Optional[dict]:
    if not shipping:
        return None
    address = {
        key: shipping.get(key)
        for key in ("name", "address", "city", "state", "postal_code", "country", "phone")
    }
    address["country"] = address["country"] or settings.DEFAULT_COUNTRY
    return address


async def _find_capture(db: AsyncSession, **criteria) -> Optional[PaymentCapture]:
    result = await db.execute(select(PaymentCapture).filter_by(**criteria))
    return result.scalar_one_or_none()


def _report_split_brain(capture_id: str, quotation_id: Optional[int], amount, error, settings: Settings) -> None:
    logger.critical(
        f"Payment captured but not settled: capture {capture_id}, quotation {quotation_id}, "
        f"amount {amount}: {error}"
    )
    split_brain.inc()
    settlements.labels(outcome="failed").inc()
    notify(
        *email_templates.settlement_alert(capture_id, quotation_id, amount, str(error), settings),
        settings.OPERATIONS_EMAIL,
    )


async def _settle(db: AsyncSession, capture: PaymentCapture, settings: Settings) -> Order:
    quotation = await get_quotation(db, capture.quotation_id)
    quotation_id = quotation.id

    result = await db.execute(
        update(Quotation)
        .where(Quotation.id == quotation_id, Quotation.status == QuotationStatus.SENT_TO_CLIENT)
        .values(
            status=QuotationStatus.CLOSED_WON,
            responded_at=utcnow(),
            shipping_info=capture.shipping_info,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Quotation is no longer awaiting payment", quotation_id=quotation_id)

    total = payable_amount(quotation)
    shipping = money(quotation.shipping_cost)
    order = Order(
        user_id=None,
        quotation_id=quotation.id,
        status=OrderStatus.PROCESSING,
        payment_method="paypal",
        payment_status=PaymentStatus.PAID,
        payment_reference=capture.capture_id,
        total_amount=total,
        shipping_cost=shipping,
        discount_amount=max(ZERO, money(quotation.total_amount) + shipping - total),
        shipping_address=shipping_address(capture.shipping_info, settings),
        notes=f"Quote ID: {quotation.id}, Email: {quotation.email or '-'}",
        items=[
            OrderItem(product_id=item.product_id, quantity=item.quantity, price=money(item.unit_price))
            for item in quotation.items
        ],
    )
    db.add(order)
    await db.flush()

    capture.status = CaptureStatus.SETTLED
    capture.order_id = order.id
    await db.commit()

    settlements.labels(outcome="settled").inc()
    logger.info(f"Capture {capture.capture_id} settled as order {order.id} for quotation {quotation.id}")

    order = await get_order(db, order.id)
    notify(*email_templates.payment_confirmed(quotation, order, settings), quotation.email)
    notify(*email_templates.new_sale(quotation, order, settings), settings.OPERATOR_EMAIL)
    return order


async def _settle_or_report(db: AsyncSession, capture: PaymentCapture, settings: Settings) -> Order:
    # rollback expires the capture, keep what the report needs
    capture_id, quotation_id, amount = capture.capture_id, capture.quotation_id, capture.amount
    try:
        return await _settle(db, capture, settings)
    except ConflictError as e:
        _report_split_brain(capture_id, quotation_id, amount, e.message, settings)
        raise
    except IntegrityError as e:
        await db.rollback()
        _report_split_brain(capture_id, quotation_id, amount, e, settings)
        raise ConflictError("An order already exists for this quotation", quotation_id=quotation_id)
    except SQLAlchemyError as e:
        await db.rollback()
        _report_split_brain(capture_id, quotation_id, amount, e, settings)
        raise SettlementError(
            "Payment captured, order registration pending",
            capture_id=capture_id,
            quotation_id=quotation_id,
        )


async def capture_payment(
    db: AsyncSession,
    processor_order_id: str,
    quotation_id: int,
    processor: PayPalClient,
    shipping_info: Optional[ShippingInfo] = None,
    settings: Optional[Settings] = None,
) -> CaptureOutcome:
    settings = settings or get_settings()
    quotation = await get_quotation(db, quotation_id)

    if quotation.status == QuotationStatus.CLOSED_WON:
        raise ConflictError("Quotation is already paid", quotation_id=quotation_id)
    if quotation.status != QuotationStatus.SENT_TO_CLIENT:
        raise ConflictError(f"Quotation is {quotation.status}, not awaiting payment", quotation_id=quotation_id)
    if await _find_capture(db, processor_order_id=processor_order_id):
        raise ConflictError("Processor order was already captured", processor_order_id=processor_order_id)

    shipping = shipping_info.model_dump() if shipping_info else quotation.shipping_info
    if not shipping:
        raise ValidationError("Shipping information is required", field="shipping_info")

    result = await processor.capture_order(processor_order_id)
    if not result.completed:
        logger.warning(
            f"Capture of processor order {processor_order_id} not completed: "
            f"{result.status}/{result.capture_status}"
        )
        raise ProcessorRejected("Payment was not completed", processor_status=result.status or None)

    expected = payable_amount(quotation)
    amount = result.amount if result.amount is not None else expected
    if amount != expected:
        logger.warning(f"Captured {amount} for quotation {quotation_id}, expected {expected}")

    owner_id = quotation_id
    if result.reference_id and result.reference_id != str(quotation_id):
        owner_id = int(result.reference_id) if result.reference_id.isdigit() else quotation_id

    capture = PaymentCapture(
        processor_order_id=processor_order_id,
        capture_id=result.capture_id,
        quotation_id=owner_id,
        amount=amount,
        currency=result.currency or settings.PAYPAL_CURRENCY,
        shipping_info=shipping,
        status=CaptureStatus.CAPTURED,
    )
    try:
        db.add(capture)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        if isinstance(e, IntegrityError) and await _find_capture(db, processor_order_id=processor_order_id):
            logger.warning(f"Processor order {processor_order_id} capture already recorded")
            raise ConflictError("Processor order was already captured", processor_order_id=processor_order_id)
        _report_split_brain(result.capture_id, owner_id, amount, e, settings)
        raise SettlementError(
            "Payment captured, order registration pending",
            capture_id=result.capture_id,
            quotation_id=owner_id,
        )
    logger.info(f"Processor order {processor_order_id} captured as {result.capture_id} ({amount})")

    if owner_id != quotation_id:
        _report_split_brain(
            result.capture_id, owner_id, amount,
            f"processor order belongs to quotation {result.reference_id}, not {quotation_id}", settings,
        )
        raise SettlementError(
            "Payment captured for a different quotation, order registration pending",
            capture_id=result.capture_id,
            quotation_id=owner_id,
        )

    order = await _settle_or_report(db, capture, settings)
    return CaptureOutcome(
        capture_id=result.capture_id,
        processor_order_id=processor_order_id,
        amount=amount,
        settled=True,
        order=order,
    )


async def settle_capture(db: AsyncSession, capture_id: str, settings: Optional[Settings] = None) -> CaptureOutcome:
    """Finish local settlement of a recorded capture; safe to repeat."""
    settings = settings or get_settings()
    capture = await _find_capture(db, capture_id=capture_id)
    if not capture:
        raise NotFoundError("Capture not found", capture_id=capture_id)

    if capture.status == CaptureStatus.SETTLED:
        order = await get_order(db, capture.order_id)
        return CaptureOutcome(
            capture_id=capture.capture_id,
            processor_order_id=capture.processor_order_id,
            amount=money(capture.amount),
            settled=True,
            order=order,
        )

    order = await _settle_or_report(db, capture, settings)
    return CaptureOutcome(
        capture_id=capture.capture_id,
        processor_order_id=capture.processor_order_id,
        amount=money(capture.amount),
        settled=True,
        order=order,
    )
