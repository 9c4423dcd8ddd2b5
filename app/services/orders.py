import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from app.core.config import Settings, get_settings
from app.core.enums import ORDER_TRANSITIONS, OrderStatus, QuotationStatus
from app.core.exceptions import ConflictError, NotFoundError
from app.models.base import utcnow
from app.models.order import Order
from app.models.quotation import Quotation
from app.services import email_templates
from app.services.notifications import notify

logger = logging.getLogger(__name__)


async def get_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found", order_id=order_id)
    return order


async def list_orders(
    db: AsyncSession,
    status: Optional[OrderStatus] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Order]:
    query = select(Order).options(selectinload(Order.items))
    if status:
        query = query.where(Order.status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    target: OrderStatus,
    settings: Optional[Settings] = None,
) -> Order:
    """Move an order to ``target``; marking it sold confirms the sale to the buyer.

    Repeating the current status is a no-op. Moves outside ORDER_TRANSITIONS,
    or racing another update of the same order, raise ConflictError.
    """
    settings = settings or get_settings()
    order = await get_order(db, order_id)
    previous = order.status

    if target == previous:
        return order
    if target not in ORDER_TRANSITIONS[previous]:
        raise ConflictError(f"Cannot move order from {previous} to {target}", order_id=order_id)

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == previous)
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Order status changed concurrently", order_id=order_id)

    quotation = None
    if order.quotation_id is not None:
        quotation = (await db.execute(select(Quotation).where(Quotation.id == order.quotation_id))).scalar_one_or_none()

    if target == OrderStatus.SOLD and quotation is not None:
        result = await db.execute(
            update(Quotation)
            .where(Quotation.id == quotation.id, Quotation.status == QuotationStatus.SENT_TO_CLIENT)
            .values(status=QuotationStatus.CLOSED_WON, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Quotation {quotation.id} closed as won by order {order_id}")

    await db.commit()
    logger.info(f"Order {order_id} moved from {previous} to {target}")

    order = await get_order(db, order_id)
    if target == OrderStatus.SOLD:
        recipient = quotation.email if quotation is not None else None
        name = quotation.requester_name if quotation is not None else None
        notify(*email_templates.order_sold(order, name, settings), recipient)

    return order
