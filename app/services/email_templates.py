"""HTML e-mail bodies. Every interpolated value goes through html.escape."""
import html
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from app.core.config import Settings

CELL = "padding:6px 10px;border:1px solid #e5e7eb"


def _money(value) -> str:
    return f"${Decimal(str(value or 0)):.2f}"


def _e(value) -> str:
    return html.escape(str(value if value is not None else ""))


def _items_table(items: Iterable) -> str:
    rows = ""
    for item in items:
        snapshot = item.product_snapshot or {}
        line_total = item.discounted_total
        if line_total is None:
            line_total = Decimal(str(item.unit_price)) * item.quantity
        rows += f"""
        <tr>
            <td style="{CELL}">{_e(snapshot.get("name", f"Product {item.product_id}"))}</td>
            <td style="{CELL};text-align:center">{item.quantity}</td>
            <td style="{CELL};text-align:right">{_money(item.unit_price)}</td>
            <td style="{CELL};text-align:right">{_money(line_total)}</td>
        </tr>"""
    return f"""
    <table style="border-collapse:collapse;width:100%;margin:16px 0">
        <tr style="background:#f3f4f6">
            <th style="{CELL};text-align:left">Product</th>
            <th style="{CELL}">Qty</th>
            <th style="{CELL};text-align:right">Unit price</th>
            <th style="{CELL};text-align:right">Total</th>
        </tr>{rows}
    </table>"""


def _totals(original, discount, shipping, final, description: Optional[str] = None) -> str:
    discount_row = ""
    if Decimal(str(discount or 0)) != 0:
        label = _e(description) if description else "Discount"
        discount_row = f'<p style="margin:4px 0;color:#16a34a">{label}: -{_money(discount)}</p>'
    return f"""
    <div style="background:#f9fafb;padding:12px;border-radius:6px;margin:12px 0">
        <p style="margin:4px 0">Subtotal: {_money(original)}</p>
        {discount_row}
        <p style="margin:4px 0">Shipping: {_money(shipping)}</p>
        <p style="margin:8px 0 0;font-size:18px"><strong>Total: {_money(final)}</strong></p>
    </div>"""


def _footer(settings: Settings) -> str:
    return f'<p style="color:#6b7280;font-size:12px;margin-top:20px">{_e(settings.SHOP_NAME)}</p>'


def quotation_received(quotation, settings: Settings) -> Tuple[str, str]:
    subject = "Your quotation request was received"
    body = f"""
    <h2 style="color:#2563eb">Thank you, {_e(quotation.requester_name)}!</h2>
    <p>We received your quotation request <strong>#{quotation.id}</strong>.
       Our team will review it and send you a final price shortly.</p>
    {_items_table(quotation.items)}
    <p>Estimated subtotal: <strong>{_money(quotation.total_amount)}</strong></p>
    {_footer(settings)}"""
    return subject, body


def new_quotation_request(quotation, settings: Settings) -> Tuple[str, str]:
    subject = f"New quotation request #{quotation.id}"
    notes = f"<p><strong>Notes:</strong> {_e(quotation.notes)}</p>" if quotation.notes else ""
    code = quotation.discount_code_applied
    code_html = f"<p><strong>Discount code:</strong> {_e(code.get('code'))}</p>" if code else ""
    body = f"""
    <h2 style="color:#2563eb">New quotation request</h2>
    <p><strong>{_e(quotation.requester_name)}</strong>
       ({_e(quotation.email or "no e-mail")}, {_e(quotation.phone or "no phone")})</p>
    <p>Organization: {_e(quotation.organization or "-")}</p>
    {notes}{code_html}
    {_items_table(quotation.items)}
    <p>Subtotal: <strong>{_money(quotation.total_amount)}</strong></p>
    {_footer(settings)}"""
    return subject, body


def quotation_ready(quotation, totals, payment_link: str, settings: Settings) -> Tuple[str, str]:
    subject = f"Your quotation #{quotation.id} is ready"
    notes = (
        f'<p style="background:#f0f9ff;padding:10px;border-left:3px solid #2563eb">'
        f"{_e(quotation.manager_notes)}</p>"
        if quotation.manager_notes else ""
    )
    body = f"""
    <h2 style="color:#2563eb">Your quotation is ready</h2>
    <p>Hello {_e(quotation.requester_name)}, here is the final price for your request.</p>
    {_items_table(quotation.items)}
    {_totals(totals.original_total, totals.discount_amount, totals.shipping_cost, totals.final_amount, totals.description)}
    {notes}
    <p style="margin-top:20px">
        <a href="{_e(payment_link)}" style="background:#2563eb;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none">Review and pay</a>
    </p>
    {_footer(settings)}"""
    return subject, body


def quotation_sent(quotation, totals, payment_link: str, settings: Settings) -> Tuple[str, str]:
    subject = f"Quotation #{quotation.id} sent to {quotation.requester_name}"
    body = f"""
    <h2 style="color:#16a34a">Quotation sent</h2>
    <p>Quotation <strong>#{quotation.id}</strong> for <strong>{_e(quotation.requester_name)}</strong>
       ({_e(quotation.email or "no e-mail")}) was priced and released.</p>
    {_totals(totals.original_total, totals.discount_amount, totals.shipping_cost, totals.final_amount, totals.description)}
    <p>Payment link: <a href="{_e(payment_link)}">{_e(payment_link)}</a></p>
    {_footer(settings)}"""
    return subject, body


def direct_payment_link(quotation, payment_link: str, settings: Settings) -> Tuple[str, str]:
    subject = f"Your payment link for order #{quotation.id}"
    total = Decimal(str(quotation.total_amount or 0))
    shipping = Decimal(str(quotation.shipping_cost or 0))
    final = Decimal(str(quotation.final_amount or 0))
    body = f"""
    <h2 style="color:#2563eb">Your order is ready for payment</h2>
    <p>Hello {_e(quotation.requester_name)}, as agreed with our team, here is your order summary.</p>
    {_items_table(quotation.items)}
    {_totals(total, total + shipping - final, shipping, final)}
    <p style="margin-top:20px">
        <a href="{_e(payment_link)}" style="background:#2563eb;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none">Pay securely</a>
    </p>
    {_footer(settings)}"""
    return subject, body


def _shipping_block(shipping: Optional[dict]) -> str:
    if not shipping:
        return ""
    lines = [shipping.get("name"), shipping.get("address"), shipping.get("city"),
             shipping.get("state"), shipping.get("postal_code"), shipping.get("country"),
             shipping.get("phone")]
    return "<p><strong>Ship to:</strong><br>" + "<br>".join(_e(line) for line in lines if line) + "</p>"


def payment_confirmed(quotation, order, settings: Settings) -> Tuple[str, str]:
    subject = f"Payment confirmed - order #{order.id}"
    body = f"""
    <h2 style="color:#16a34a">Payment confirmed</h2>
    <p>Thank you, {_e(quotation.requester_name)}. We received your payment of
       <strong>{_money(order.total_amount)}</strong> for quotation #{quotation.id}.</p>
    <p>Order number: <strong>#{order.id}</strong><br>
       Payment reference: {_e(order.payment_reference)}</p>
    {_items_table(quotation.items)}
    {_shipping_block(order.shipping_address)}
    {_footer(settings)}"""
    return subject, body


def new_sale(quotation, order, settings: Settings) -> Tuple[str, str]:
    subject = f"New sale - order #{order.id} ({_money(order.total_amount)})"
    body = f"""
    <h2 style="color:#16a34a">New sale</h2>
    <p>Quotation <strong>#{quotation.id}</strong> from <strong>{_e(quotation.requester_name)}</strong>
       ({_e(quotation.email or "no e-mail")}) was paid.</p>
    <p>Order <strong>#{order.id}</strong>, {_money(order.total_amount)} via {_e(order.payment_method)}
       (reference {_e(order.payment_reference)}).</p>
    {_items_table(quotation.items)}
    {_shipping_block(order.shipping_address)}
    {_footer(settings)}"""
    return subject, body


def order_sold(order, recipient_name: Optional[str], settings: Settings) -> Tuple[str, str]:
    subject = f"Your order #{order.id} is confirmed"
    body = f"""
    <h2 style="color:#16a34a">Order confirmed</h2>
    <p>Hello {_e(recipient_name or "there")}, your order <strong>#{order.id}</strong>
       for {_money(order.total_amount)} is confirmed and is being prepared.</p>
    {_shipping_block(order.shipping_address)}
    {_footer(settings)}"""
    return subject, body


def settlement_alert(capture_id: str, quotation_id: Optional[int], amount, error: str, settings: Settings) -> Tuple[str, str]:
    subject = f"ACTION REQUIRED: captured payment {capture_id} not recorded"
    body = f"""
    <h2 style="color:#dc2626">Captured payment without an order</h2>
    <p>The processor captured <strong>{_money(amount)}</strong> (capture <strong>{_e(capture_id)}</strong>)
       for quotation <strong>#{_e(quotation_id)}</strong>, but the order could not be written.</p>
    <p><strong>Error:</strong> {_e(error)}</p>
    <p>Retry with <code>POST /payments/captures/{_e(capture_id)}/settle</code>.</p>
    {_footer(settings)}"""
    return subject, body
