"""Import every model so Base.metadata knows all tables"""
from app.models.base import Base, BaseModel  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.audit import Audit  # noqa: F401
from app.models.quotation import Quotation, QuotationItem  # noqa: F401
from app.models.order import Order, OrderItem  # noqa: F401
from app.models.payment_capture import PaymentCapture  # noqa: F401
from app.models.discount_code import DiscountCode  # noqa: F401
