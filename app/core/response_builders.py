from decimal import Decimal
from typing import Optional

from app.core.enums import QuotationStatus
from app.models.discount_code import DiscountCode
from app.models.order import Order, OrderItem
from app.models.quotation import Quotation, QuotationItem
from app.schemas.discount import DiscountCodeOut
from app.schemas.order import OrderItemOut, OrderOut
from app.schemas.quotation import PricingOut, PublicQuotationOut, QuotationItemOut, QuotationOut


def as_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(Decimal(str(value)))


def build_quotation_item_response(item: QuotationItem) -> QuotationItemOut:
    return QuotationItemOut(
        id=item.id,
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price=as_float(item.unit_price),
        category_id=item.category_id,
        discount_percentage=as_float(item.discount_percentage),
        discount_note=item.discount_note,
        discounted_total=as_float(item.discounted_total),
        product_snapshot=item.product_snapshot or {},
    )


def build_quotation_response(quotation: Quotation) -> QuotationOut:
    return QuotationOut(
        id=quotation.id,
        status=quotation.status,
        requester_name=quotation.requester_name,
        organization=quotation.organization,
        email=quotation.email,
        phone=quotation.phone,
        notes=quotation.notes,
        source=quotation.source,
        locale=quotation.locale,
        channel=quotation.channel,
        discount_type=quotation.discount_type,
        discount_value=as_float(quotation.discount_value),
        discount_code_applied=quotation.discount_code_applied,
        total_amount=as_float(quotation.total_amount),
        final_amount=as_float(quotation.final_amount),
        shipping_cost=as_float(quotation.shipping_cost) or 0.0,
        quote_slug=quotation.quote_slug,
        responded_at=quotation.responded_at,
        manager_notes=quotation.manager_notes,
        admin_notes=quotation.admin_notes,
        created_at=quotation.created_at,
        items=[build_quotation_item_response(item) for item in quotation.items],
    )


def build_order_item_response(item: OrderItem) -> OrderItemOut:
    return OrderItemOut(
        id=item.id,
        product_id=item.product_id,
        quantity=item.quantity,
        price=as_float(item.price),
    )


def build_order_response(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        user_id=order.user_id,
        quotation_id=order.quotation_id,
        status=order.status,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        payment_reference=order.payment_reference,
        total_amount=as_float(order.total_amount),
        shipping_cost=as_float(order.shipping_cost) or 0.0,
        discount_amount=as_float(order.discount_amount) or 0.0,
        shipping_address=order.shipping_address,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[build_order_item_response(item) for item in order.items],
    )


def build_quotation_response_list(quotations: list) -> list:
    return [build_quotation_response(quotation) for quotation in quotations]


def build_order_response_list(orders: list) -> list:
    return [build_order_response(order) for order in orders]


def build_public_quotation_response(quotation: Quotation, totals) -> PublicQuotationOut:
    return PublicQuotationOut(
        id=quotation.id,
        status=quotation.status,
        requester_name=quotation.requester_name,
        discount_type=quotation.discount_type,
        total_amount=as_float(totals.original_total),
        discount_amount=as_float(totals.discount_amount),
        shipping_cost=as_float(totals.shipping_cost),
        final_amount=as_float(totals.final_amount),
        quote_slug=quotation.quote_slug,
        manager_notes=quotation.manager_notes,
        paid=quotation.status == QuotationStatus.CLOSED_WON,
        items=[build_quotation_item_response(item) for item in quotation.items],
    )


def build_pricing_response(quotation: Quotation, totals, payment_link: Optional[str] = None) -> PricingOut:
    return PricingOut(
        id=quotation.id,
        status=quotation.status,
        total_amount=as_float(totals.original_total),
        discount_amount=as_float(totals.discount_amount),
        shipping_cost=as_float(totals.shipping_cost),
        final_amount=as_float(totals.final_amount),
        quote_slug=quotation.quote_slug,
        payment_link=payment_link,
    )


def build_discount_code_response(discount_code: DiscountCode) -> DiscountCodeOut:
    return DiscountCodeOut(
        id=discount_code.id,
        code=discount_code.code,
        description=discount_code.description,
        discount_type=discount_code.discount_type,
        discount_value=as_float(discount_code.discount_value),
        min_order_amount=as_float(discount_code.min_order_amount),
        max_discount_amount=as_float(discount_code.max_discount_amount),
        usage_limit=discount_code.usage_limit,
        used_count=discount_code.used_count or 0,
        valid_from=discount_code.valid_from,
        valid_until=discount_code.valid_until,
        is_active=discount_code.is_active,
        apply_to_all_categories=discount_code.apply_to_all_categories,
        category_ids=discount_code.category_ids or [],
        created_at=discount_code.created_at,
    )
