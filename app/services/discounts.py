"""Discount engine: pure money arithmetic, no I/O.

All amounts are Decimal, quantized to cents with ROUND_HALF_UP. Aggregate
specs (percentage, fixed_amount, total_override) act on the goods total,
item-scoped specs (product_percentage, product_fixed) act on each line and
sum up. Anything the engine cannot honour raises DiscountRejected.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping, Optional, Sequence

from app.core.enums import DiscountType
from app.core.exceptions import DiscountRejected

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Rejection reasons
INVALID_VALUE = "invalid_value"
MISSING_ITEMS = "missing_items"
UNKNOWN_ITEM = "unknown_item"
MIXED_SCOPE = "mixed_scope"
UNSUPPORTED_TYPE = "unsupported_type"
INACTIVE = "inactive"
NOT_YET_VALID = "not_yet_valid"
EXPIRED = "expired"
USAGE_LIMIT_REACHED = "usage_limit_reached"
MIN_ORDER_NOT_MET = "min_order_not_met"
CATEGORY_NOT_ELIGIBLE = "category_not_eligible"

CODE_DISCOUNT_TYPES = {DiscountType.PERCENTAGE, DiscountType.FIXED_AMOUNT}

DISCOUNT_DESCRIPTIONS = {
    DiscountType.PERCENTAGE: "{value}% off the total",
    DiscountType.FIXED_AMOUNT: "${value} off the total",
    DiscountType.TOTAL_OVERRIDE: "Special price applied",
    DiscountType.PRODUCT_PERCENTAGE: "Per-product discounts applied",
    DiscountType.PRODUCT_FIXED: "Fixed per-product discounts applied",
}


def money(value) -> Decimal:
    if value is None:
        return ZERO
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise DiscountRejected(INVALID_VALUE, f"Invalid monetary amount: {value!r}")


@dataclass(frozen=True)
class LineContext:
    item_id: int
    unit_price: Decimal
    quantity: int
    category_id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return money(money(self.unit_price) * self.quantity)


@dataclass(frozen=True)
class DiscountSpec:
    type: DiscountType
    value: Decimal = ZERO
    product_discounts: Mapping[int, Decimal] = field(default_factory=dict)
    max_discount: Optional[Decimal] = None


@dataclass(frozen=True)
class ItemDiscount:
    item_id: int
    discounted_total: Decimal
    discount_percentage: Optional[Decimal] = None
    discount_note: Optional[str] = None


@dataclass(frozen=True)
class DiscountResult:
    final_amount: Decimal
    discount_amount: Decimal
    item_discounts: tuple = ()


@dataclass(frozen=True)
class QuoteTotals:
    original_total: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    final_amount: Decimal
    item_discounts: tuple = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class DiscountCodeTerms:
    """The pricing-relevant part of a discount code, detached from the store"""
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Decimal = ZERO
    max_discount_amount: Optional[Decimal] = None
    apply_to_all_categories: bool = True
    category_ids: tuple = ()

    @classmethod
    def from_model(cls, code) -> "DiscountCodeTerms":
        return cls(
            code=code.code,
            discount_type=DiscountType(code.discount_type),
            discount_value=money(code.discount_value),
            min_order_amount=money(code.min_order_amount),
            max_discount_amount=(
                money(code.max_discount_amount) if code.max_discount_amount is not None else None
            ),
            apply_to_all_categories=bool(code.apply_to_all_categories),
            category_ids=tuple(code.category_ids or ()),
        )

    @classmethod
    def from_snapshot(cls, snapshot: dict) -> "DiscountCodeTerms":
        max_discount = snapshot.get("max_discount_amount")
        return cls(
            code=snapshot["code"],
            discount_type=DiscountType(snapshot["discount_type"]),
            discount_value=money(snapshot["discount_value"]),
            min_order_amount=money(snapshot.get("min_order_amount")),
            max_discount_amount=money(max_discount) if max_discount is not None else None,
            apply_to_all_categories=bool(snapshot.get("apply_to_all_categories", True)),
            category_ids=tuple(snapshot.get("category_ids") or ()),
        )

    def to_snapshot(self, discount_amount: Decimal) -> dict:
        return {
            "code": self.code,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "min_order_amount": str(self.min_order_amount),
            "max_discount_amount": (
                str(self.max_discount_amount) if self.max_discount_amount is not None else None
            ),
            "apply_to_all_categories": self.apply_to_all_categories,
            "category_ids": list(self.category_ids),
            "discount_amount": str(discount_amount),
        }


def _check_percentage(value: Decimal, field_name: str = "discount.value") -> Decimal:
    if value < 0 or value > HUNDRED:
        raise DiscountRejected(INVALID_VALUE, "Percentage must be between 0 and 100", field=field_name)
    return value


def _check_non_negative(value: Decimal, field_name: str = "discount.value") -> Decimal:
    if value < 0:
        raise DiscountRejected(INVALID_VALUE, "Discount value cannot be negative", field=field_name)
    return value


def _apply_per_item(spec: DiscountSpec, items: Sequence[LineContext]) -> DiscountResult:
    if not items:
        raise DiscountRejected(MISSING_ITEMS, "Item-level discounts need the quotation items")

    known = {item.item_id for item in items}
    unknown = [item_id for item_id in spec.product_discounts if int(item_id) not in known]
    if unknown:
        raise DiscountRejected(
            UNKNOWN_ITEM,
            f"Discounts given for items not on the quotation: {sorted(unknown)}",
            field="discount.product_discounts",
        )
    per_item = {int(k): money(v) for k, v in spec.product_discounts.items()}

    annotations = []
    base = ZERO
    final = ZERO
    for item in items:
        line_total = item.line_total
        value = per_item.get(item.item_id, ZERO)
        if spec.type == DiscountType.PRODUCT_PERCENTAGE:
            _check_percentage(value, "discount.product_discounts")
            discounted = money(line_total * (HUNDRED - value) / HUNDRED)
            annotation = ItemDiscount(
                item_id=item.item_id,
                discounted_total=discounted,
                discount_percentage=value if value else None,
            )
        else:
            _check_non_negative(value, "discount.product_discounts")
            discounted = max(ZERO, line_total - value)
            annotation = ItemDiscount(
                item_id=item.item_id,
                discounted_total=discounted,
                discount_note=f"Fixed discount: ${value}" if value else None,
            )
        annotations.append(annotation)
        base += line_total
        final += discounted

    return DiscountResult(
        final_amount=money(final),
        discount_amount=money(base - final),
        item_discounts=tuple(annotations),
    )


def apply_discount(
    base_amount,
    spec: DiscountSpec,
    items: Sequence[LineContext] = (),
) -> DiscountResult:
    """Apply one discount spec to a goods amount (shipping excluded).

    For total_override the value is the goods price verbatim and the
    returned discount is only informational; it can be negative.
    """
    base = money(base_amount)
    if base < 0:
        raise DiscountRejected(INVALID_VALUE, "Base amount cannot be negative", field="total_amount")
    value = money(spec.value)

    if spec.type == DiscountType.PERCENTAGE:
        _check_percentage(value)
        if spec.max_discount is not None:
            _check_non_negative(money(spec.max_discount), "discount.max_discount")
        discount = money(base * value / HUNDRED)
        if spec.max_discount is not None and discount > money(spec.max_discount):
            discount = money(spec.max_discount)
        discount = min(discount, base)
        return DiscountResult(final_amount=max(ZERO, base - discount), discount_amount=discount)

    if spec.type == DiscountType.FIXED_AMOUNT:
        _check_non_negative(value)
        discount = min(value, base)
        return DiscountResult(final_amount=base - discount, discount_amount=discount)

    if spec.type == DiscountType.TOTAL_OVERRIDE:
        _check_non_negative(value)
        return DiscountResult(final_amount=value, discount_amount=base - value)

    if spec.type.is_item_scoped:
        return _apply_per_item(spec, items)

    raise DiscountRejected(UNSUPPORTED_TYPE, f"Unsupported discount type: {spec.type}")


def describe_discount(spec: Optional[DiscountSpec]) -> Optional[str]:
    if spec is None:
        return None
    template = DISCOUNT_DESCRIPTIONS.get(spec.type)
    return template.format(value=money(spec.value)) if template else None


def compute_quote_totals(
    total_amount,
    spec: Optional[DiscountSpec],
    shipping_cost=ZERO,
    items: Sequence[LineContext] = (),
    code_discount=ZERO,
) -> QuoteTotals:
    """Full price breakdown for a quotation.

    ``code_discount`` is the discount already granted by a code at creation
    time; an aggregate spec applies on top of it, an item-scoped spec cannot
    be combined with it.
    """
    original = money(total_amount)
    shipping = money(shipping_cost)
    code_discount = money(code_discount)
    if shipping < 0:
        raise DiscountRejected(INVALID_VALUE, "Shipping cost cannot be negative", field="shipping_cost")

    if spec is None:
        goods = max(ZERO, original - code_discount)
        return QuoteTotals(
            original_total=original,
            discount_amount=original - goods,
            shipping_cost=shipping,
            final_amount=goods + shipping,
        )

    if spec.type.is_item_scoped and code_discount > 0:
        raise DiscountRejected(
            MIXED_SCOPE,
            "A quotation with a discount code cannot also take per-product discounts",
        )

    result = apply_discount(original - code_discount, spec, items)
    return QuoteTotals(
        original_total=original,
        discount_amount=money(original - result.final_amount),
        shipping_cost=shipping,
        final_amount=money(result.final_amount + shipping),
        item_discounts=result.item_discounts,
        description=describe_discount(spec),
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_code_availability(code, now: Optional[datetime] = None) -> None:
    """Active flag, [valid_from, valid_until) window and usage limit."""
    now = now or datetime.now(timezone.utc)
    if not code.is_active:
        raise DiscountRejected(INACTIVE, "Discount code is not active", field="discount_code")
    valid_from = as_utc(code.valid_from)
    valid_until = as_utc(code.valid_until)
    if valid_from is not None and now < valid_from:
        raise DiscountRejected(NOT_YET_VALID, "Discount code is not valid yet", field="discount_code")
    if valid_until is not None and now >= valid_until:
        raise DiscountRejected(EXPIRED, "Discount code has expired", field="discount_code")
    if code.usage_limit is not None and (code.used_count or 0) >= code.usage_limit:
        raise DiscountRejected(
            USAGE_LIMIT_REACHED, "Discount code usage limit reached", field="discount_code"
        )


def apply_code_terms(
    terms: DiscountCodeTerms,
    items: Sequence[LineContext],
    skip_min_order: bool = False,
) -> DiscountResult:
    """Price a cart with a discount code; only eligible categories form the base."""
    if terms.discount_type not in CODE_DISCOUNT_TYPES:
        raise DiscountRejected(UNSUPPORTED_TYPE, "Discount codes are percentage or fixed amount only")
    if not items:
        raise DiscountRejected(MISSING_ITEMS, "Cannot apply a discount code to an empty cart")

    order_total = money(sum((item.line_total for item in items), ZERO))
    if not skip_min_order and order_total < terms.min_order_amount:
        raise DiscountRejected(
            MIN_ORDER_NOT_MET,
            f"Minimum order amount is ${terms.min_order_amount}",
            field="discount_code",
        )

    eligible = _eligible_items(terms, items)
    if not eligible:
        raise DiscountRejected(
            CATEGORY_NOT_ELIGIBLE,
            "Discount code does not apply to these products",
            field="discount_code",
        )
    eligible_base = money(sum((item.line_total for item in eligible), ZERO))

    result = apply_discount(
        eligible_base,
        DiscountSpec(
            type=terms.discount_type,
            value=terms.discount_value,
            max_discount=terms.max_discount_amount,
        ),
    )
    return DiscountResult(
        final_amount=order_total - result.discount_amount,
        discount_amount=result.discount_amount,
    )


def _eligible_items(terms: DiscountCodeTerms, items: Iterable[LineContext]) -> list:
    if terms.apply_to_all_categories:
        return list(items)
    allowed = set(terms.category_ids)
    return [item for item in items if item.category_id in allowed]
