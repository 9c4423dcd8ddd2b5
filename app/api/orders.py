from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import audit_log
from app.core.config import Settings, get_settings
from app.core.enums import AuditAction, OrderStatus
from app.core.response_builders import build_order_response, build_order_response_list
from app.core.security import require_operator
from app.db.session import get_db
from app.schemas.order import OrderOut, OrderStatusUpdate
from app.services import orders as service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/", response_model=List[OrderOut])
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    orders = await service.list_orders(db, status, limit, offset)
    return build_order_response_list(orders)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
):
    order = await service.get_order(db, order_id)
    return build_order_response(order)


@router.put("/{order_id}/status", response_model=OrderOut)
@audit_log(AuditAction.UPDATE_ORDER_STATUS, resource_arg="order_id")
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_operator),
    settings: Settings = Depends(get_settings),
):
    """Update an order status; moving to sold confirms the sale to the buyer"""
    order = await service.update_order_status(db, order_id, payload.status, settings)
    return build_order_response(order)
