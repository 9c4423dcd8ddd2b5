from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Integer, Numeric, String

from app.core.enums import DiscountType
from app.models.base import BaseModel


class DiscountCode(BaseModel):
    __tablename__ = "discount_codes"

    code = Column(String(40), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_order_amount = Column(Numeric(12, 2), nullable=False, default=0)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)

    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    apply_to_all_categories = Column(Boolean, nullable=False, default=True)
    category_ids = Column(JSON, nullable=False, default=list)
