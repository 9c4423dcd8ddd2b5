from sqlalchemy import JSON, Column, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from app.core.enums import OrderStatus, PaymentStatus
from app.models.base import BaseModel


class Order(BaseModel):
    __tablename__ = "orders"

    user_id = Column(ForeignKey("users.id"), nullable=True)
    quotation_id = Column(ForeignKey("quotations.id"), nullable=True, unique=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PROCESSING, nullable=False)
    payment_method = Column(String(40), nullable=False, default="paypal")
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_reference = Column(String(80), nullable=True, index=True)

    total_amount = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_address = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    order_id = Column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order = relationship("Order", back_populates="items")

    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
