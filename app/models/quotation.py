from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from app.core.enums import DiscountType, QuotationStatus
from app.models.base import BaseModel


class Quotation(BaseModel):
    __tablename__ = "quotations"

    status = Column(Enum(QuotationStatus), default=QuotationStatus.RECEIVED, nullable=False)

    requester_name = Column(String(160), nullable=False)
    organization = Column(String(160), nullable=True)
    email = Column(String(160), nullable=True)
    phone = Column(String(40), nullable=True)
    notes = Column(Text, nullable=True)

    source = Column(String(40), nullable=False, default="souvenirs")
    locale = Column(String(10), nullable=False, default="es")
    channel = Column(String(20), nullable=False, default="web")

    discount_type = Column(Enum(DiscountType), nullable=True)
    discount_value = Column(Numeric(12, 2), nullable=True)
    discount_code_applied = Column(JSON, nullable=True)

    total_amount = Column(Numeric(12, 2), nullable=True)
    final_amount = Column(Numeric(12, 2), nullable=True)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_info = Column(JSON, nullable=True)

    quote_slug = Column(String(64), unique=True, nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    manager_notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    items = relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.id",
    )

    __table_args__ = (
        Index("ix_quotations_status", "status"),
        Index("ix_quotations_email_source_created", "email", "source", "created_at"),
    )


class QuotationItem(BaseModel):
    __tablename__ = "quotation_items"

    request_id = Column(ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    quotation = relationship("Quotation", back_populates="items")

    product_id = Column(Integer, nullable=False)
    category_id = Column(Integer, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_note = Column(String(255), nullable=True)
    discounted_total = Column(Numeric(12, 2), nullable=True)

    product_snapshot = Column(JSON, nullable=False)
