from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"

    def __str__(self):
        return self.value


class QuotationStatus(str, Enum):
    RECEIVED = "received"
    PRICED = "priced"
    SENT_TO_CLIENT = "sent_to_client"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"

    def __str__(self):
        return self.value


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    TOTAL_OVERRIDE = "total_override"
    PRODUCT_PERCENTAGE = "product_percentage"
    PRODUCT_FIXED = "product_fixed"

    @property
    def is_item_scoped(self) -> bool:
        return self in (DiscountType.PRODUCT_PERCENTAGE, DiscountType.PRODUCT_FIXED)

    def __str__(self):
        return self.value


class QuotationSource(str, Enum):
    WEB = "souvenirs"
    DIRECT_PAYMENT = "direct_payment"

    def __str__(self):
        return self.value


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    SOLD = "sold"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"

    def __str__(self):
        return self.value


class CaptureStatus(str, Enum):
    CAPTURED = "captured"
    SETTLED = "settled"

    def __str__(self):
        return self.value


class AuditAction(str, Enum):
    PRICE_QUOTATION = "price_quotation"
    SEND_QUOTATION = "send_quotation"
    UPDATE_QUOTATION_STATUS = "update_quotation_status"
    CREATE_DIRECT_LINK = "create_direct_link"
    SETTLE_CAPTURE = "settle_capture"
    UPDATE_ORDER_STATUS = "update_order_status"
    CREATE_DISCOUNT_CODE = "create_discount_code"
    UPDATE_DISCOUNT_CODE = "update_discount_code"
    LOGIN = "login"

    def __str__(self):
        return self.value


PUBLIC_QUOTATION_STATUSES = {QuotationStatus.SENT_TO_CLIENT, QuotationStatus.CLOSED_WON}

QUOTATION_TRANSITIONS = {
    QuotationStatus.RECEIVED: {
        QuotationStatus.PRICED,
        QuotationStatus.SENT_TO_CLIENT,
        QuotationStatus.CLOSED_LOST,
    },
    QuotationStatus.PRICED: {
        QuotationStatus.PRICED,
        QuotationStatus.SENT_TO_CLIENT,
        QuotationStatus.CLOSED_LOST,
    },
    QuotationStatus.SENT_TO_CLIENT: {QuotationStatus.CLOSED_LOST},
    QuotationStatus.CLOSED_WON: set(),
    QuotationStatus.CLOSED_LOST: set(),
}

ORDER_TRANSITIONS = {
    OrderStatus.PROCESSING: {OrderStatus.SOLD, OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SOLD: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: set(),
    OrderStatus.CANCELLED: set(),
}
