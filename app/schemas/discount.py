from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import DiscountType
from app.schemas.quotation import QuotationItemIn


class DiscountCodeValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    items: List[QuotationItemIn]


class DiscountCodeValidateOut(BaseModel):
    valid: bool
    code: str
    discount_amount: float = 0.0
    final_amount: float = 0.0
    reason: Optional[str] = None
    message: Optional[str] = None


class DiscountCodeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=40, pattern=r"^\s*[A-Za-z0-9_-]+\s*$")
    description: Optional[str] = Field(default=None, max_length=255)
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    apply_to_all_categories: bool = True
    category_ids: List[int] = []


class DiscountCodeUpdate(BaseModel):
    """Partial update; the code itself is fixed once issued"""
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, max_length=255)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    apply_to_all_categories: Optional[bool] = None
    category_ids: Optional[List[int]] = None


class DiscountCodeOut(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float
    min_order_amount: float
    max_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    used_count: int
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool
    apply_to_all_categories: bool
    category_ids: List[int] = []
    created_at: datetime
