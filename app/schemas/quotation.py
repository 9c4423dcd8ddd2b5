from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import DiscountType, QuotationStatus


class ProductSnapshot(BaseModel):
    """Display fields frozen at quotation time"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = None
    image_url: Optional[str] = None
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class QuotationItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    category_id: Optional[int] = None
    product_snapshot: ProductSnapshot


class QuotationCreate(BaseModel):
    requester_name: str = Field(max_length=160)
    organization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    locale: str = "es"
    channel: str = "web"
    discount_code: Optional[str] = None
    items: List[QuotationItemIn]


class QuotationCreated(BaseModel):
    ok: bool = True
    request_id: int
    status: QuotationStatus
    total_amount: float
    final_amount: float


class DiscountSpecIn(BaseModel):
    type: DiscountType
    value: Decimal = Decimal("0")
    product_discounts: Optional[Dict[int, Decimal]] = None
    max_discount: Optional[Decimal] = Field(default=None, ge=0)


class PricingRequest(BaseModel):
    discount: Optional[DiscountSpecIn] = None
    final_amount: Optional[Decimal] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    manager_notes: Optional[str] = None


class QuotationStatusUpdate(BaseModel):
    status: QuotationStatus
    admin_notes: Optional[str] = None


class QuotationItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: float
    category_id: Optional[int] = None
    discount_percentage: Optional[float] = None
    discount_note: Optional[str] = None
    discounted_total: Optional[float] = None
    product_snapshot: dict


class QuotationOut(BaseModel):
    id: int
    status: QuotationStatus
    requester_name: str
    organization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    source: str
    locale: str
    channel: str
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    discount_code_applied: Optional[dict] = None
    total_amount: Optional[float] = None
    final_amount: Optional[float] = None
    shipping_cost: float
    quote_slug: Optional[str] = None
    responded_at: Optional[datetime] = None
    manager_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    items: List[QuotationItemOut] = []


class PublicQuotationOut(BaseModel):
    id: int
    status: QuotationStatus
    requester_name: str
    discount_type: Optional[DiscountType] = None
    total_amount: float
    discount_amount: float
    shipping_cost: float
    final_amount: float
    quote_slug: str
    manager_notes: Optional[str] = None
    paid: bool
    items: List[QuotationItemOut] = []


class PricingOut(BaseModel):
    id: int
    status: QuotationStatus
    total_amount: float
    discount_amount: float
    shipping_cost: float
    final_amount: float
    quote_slug: Optional[str] = None
    payment_link: Optional[str] = None
