"""Order notifications.

Handlers ``emit`` events into the outbox while serving a request; the outbox
is drained after the response has been sent, so a slow or failing mail
provider never delays or fails checkout.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, List, Optional

from .mailer import Mailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    to: str
    subject: str
    text: str


class NotificationOutbox:
    def __init__(self, mailer: Mailer):
        self._mailer = mailer
        self._queue: Deque[NotificationEvent] = deque()

    def emit(self, event: NotificationEvent) -> None:
        if not event.to:
            logger.info("notification dropped, no recipient kind=%s", event.kind)
            return
        self._queue.append(event)

    def drain(self) -> int:
        """Send every queued event; failures are logged and skipped."""
        sent = 0
        while True:
            try:
                event = self._queue.popleft()
            except IndexError:
                break
            try:
                self._mailer.send_mail(event.to, event.subject, event.text)
                sent += 1
            except Exception:
                logger.exception("notification failed kind=%s to=%s", event.kind, event.to)
        return sent


def format_inr(value: Any) -> str:
    try:
        amount = round(float(value or 0), 2)
    except (TypeError, ValueError):
        amount = 0.0
    sign = "-" if amount < 0 else ""
    whole, _, paise = f"{abs(amount):.2f}".partition(".")
    # Indian grouping: last three digits, then pairs
    head, tail = whole[:-3], whole[-3:]
    groups: List[str] = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    grouped = ",".join(groups + [tail])
    return f"{sign}₹{grouped}" + (f".{paise}" if paise != "00" else "")


def _short_id(order: dict) -> str:
    return str(order.get("_id", ""))[-8:]


def order_items_text(items: List[dict]) -> str:
    lines = []
    for it in items or []:
        qty = it.get("quantity", 0)
        price = it.get("price", 0)
        lines.append(f"- {it.get('name', 'Product')} x{qty} @ {format_inr(price)} = {format_inr(price * qty)}")
    return "\n".join(lines) or "-"


def address_text(address: Optional[dict]) -> str:
    if not address:
        return "-"
    city_line = " ".join(p for p in (address.get("city"), address.get("state"), address.get("postal_code")) if p)
    parts = [
        address.get("name"),
        address.get("phone"),
        address.get("line1"),
        address.get("line2"),
        city_line,
        address.get("country"),
    ]
    return "\n".join(str(p) for p in parts if p) or "-"


def _totals_text(order: dict) -> str:
    return (
        f"Subtotal: {format_inr(order.get('subtotal'))}\n"
        f"Discount: {format_inr(order.get('discount'))}\n"
        f"GST: {format_inr(order.get('tax'))}\n"
        f"Total: {format_inr(order.get('total'))}"
    )


def _customer_name(order: dict) -> str:
    address = order.get("shipping_address") or {}
    if address.get("name"):
        return str(address["name"])
    email = order.get("customer_email") or ""
    return email.split("@")[0] if email else "Customer"


def admin_new_order(order: dict, store_name: str, to: str) -> NotificationEvent:
    subject = f"New order received • {store_name} • #{_short_id(order)}"
    text = (
        f"{store_name}\n\nNew order received.\n\n"
        f"Order ID: {order.get('_id')}\n"
        f"Customer: {_customer_name(order)}\n"
        f"Email: {order.get('customer_email') or ''}\n"
        f"Phone: {order.get('customer_phone') or ''}\n\n"
        f"Items:\n{order_items_text(order.get('items'))}\n\n"
        f"{_totals_text(order)}\n\n"
        f"Shipping address:\n{address_text(order.get('shipping_address'))}"
    )
    return NotificationEvent(kind="order.placed.admin", to=to, subject=subject, text=text)


def customer_order_placed(order: dict, store_name: str, to: str) -> NotificationEvent:
    subject = f"Order placed • {store_name} • #{_short_id(order)}"
    text = (
        f"{store_name}\n\nHi {_customer_name(order)},\n\n"
        f"We have received your order.\n\nOrder ID: {order.get('_id')}\n\n"
        f"Items:\n{order_items_text(order.get('items'))}\n\n"
        f"{_totals_text(order)}\n\n"
        f"Shipping address:\n{address_text(order.get('shipping_address'))}\n\n"
        "Thank you for shopping with us."
    )
    return NotificationEvent(kind="order.placed.customer", to=to, subject=subject, text=text)


def status_label(status: str) -> str:
    return str(status or "").replace("_", " ").title()


def customer_status_update(order: dict, old_status: str, new_status: str, store_name: str, to: str) -> NotificationEvent:
    subject = f"Order {status_label(new_status)} • {store_name} • #{_short_id(order)}"
    text = (
        f"{store_name}\n\nHi {_customer_name(order)},\n\n"
        f"Your order {order.get('_id')} moved from {status_label(old_status)} "
        f"to {status_label(new_status)}.\n\n"
        f"Total: {format_inr(order.get('total'))}"
    )
    return NotificationEvent(kind="order.status_changed", to=to, subject=subject, text=text)


def otp_message(heading: str, code: str, ttl_seconds: int, store_name: str, to: str) -> NotificationEvent:
    minutes = max(ttl_seconds // 60, 1)
    text = (
        f"{store_name}\n\n{heading}\n\nOTP: {code}\n"
        f"Expires in {minutes} minutes.\n\n"
        "If you did not request this, ignore this email."
    )
    return NotificationEvent(kind="auth.otp", to=to, subject=heading, text=text)
