from sqlalchemy import JSON, Column, Enum, ForeignKey, Numeric, String

from app.core.enums import CaptureStatus
from app.models.base import BaseModel


class PaymentCapture(BaseModel):
    __tablename__ = "payment_captures"

    processor_order_id = Column(String(80), unique=True, nullable=False)
    capture_id = Column(String(80), unique=True, nullable=False)
    quotation_id = Column(ForeignKey("quotations.id"), nullable=False, index=True)
    order_id = Column(ForeignKey("orders.id"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    shipping_info = Column(JSON, nullable=True)
    status = Column(Enum(CaptureStatus), default=CaptureStatus.CAPTURED, nullable=False)
