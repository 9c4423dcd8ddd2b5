from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.quotation import DiscountSpecIn, ProductSnapshot


class ShippingInfo(BaseModel):
    name: str
    address: str
    city: str
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class ProcessorOrderRequest(BaseModel):
    quotation_id: int
    shipping_info: Optional[ShippingInfo] = None


class ProcessorOrderOut(BaseModel):
    processor_order_id: str
    status: str
    amount: float
    currency: str
    approve_url: Optional[str] = None


class CaptureRequest(BaseModel):
    processor_order_id: str = Field(min_length=1)
    quotation_id: int
    shipping_info: Optional[ShippingInfo] = None


class CaptureOut(BaseModel):
    status: str
    settled: bool
    order_id: Optional[int] = None
    capture_id: str
    processor_order_id: str
    total_amount: float


class CartItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    category_id: Optional[int] = None
    product_snapshot: ProductSnapshot


class CustomerInfo(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: Optional[str] = None


class DirectLinkRequest(BaseModel):
    cart_items: List[CartItemIn]
    customer_info: CustomerInfo
    discount_info: Optional[DiscountSpecIn] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    total_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    manager_notes: Optional[str] = None
    shipping_info: Optional[ShippingInfo] = None


class DirectLinkOut(BaseModel):
    success: bool = True
    quotation_id: int
    quote_slug: str
    total_amount: float
    final_amount: float
    payment_link: str
    whatsapp_link: Optional[str] = None
