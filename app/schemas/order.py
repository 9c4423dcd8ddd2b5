from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from app.core.enums import OrderStatus, PaymentStatus


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    price: float


class OrderOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    quotation_id: Optional[int] = None
    status: OrderStatus
    payment_method: str
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    total_amount: float
    shipping_cost: float
    discount_amount: float
    shipping_address: Optional[dict] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
