"""Email and in-app copy for order and loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from yumrun_api.models.order import OrderStatusEnum


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


@dataclass(frozen=True)
class StatusCopy:
    title: str
    message: str


_STATUS_COPY: dict[OrderStatusEnum, StatusCopy] = {
    OrderStatusEnum.CONFIRMED: StatusCopy(
        "Your Order is Confirmed",
        "The restaurant has accepted your order.",
    ),
    OrderStatusEnum.PREPARING: StatusCopy(
        "Your Order is Being Prepared",
        "The restaurant has started preparing your delicious meal.",
    ),
    OrderStatusEnum.READY: StatusCopy(
        "Your Order is Ready for Pickup",
        "Your order is ready and will be picked up by a delivery rider soon.",
    ),
    OrderStatusEnum.OUT_FOR_DELIVERY: StatusCopy(
        "Your Order is On the Way",
        "Your order has been picked up by our delivery rider and is on the way to you.",
    ),
    OrderStatusEnum.DELIVERED: StatusCopy(
        "Your Order Has Been Delivered",
        "Your order has been delivered. Enjoy your meal!",
    ),
    OrderStatusEnum.CANCELLED: StatusCopy(
        "Your Order Has Been Cancelled",
        "Your order has been cancelled. If you did not request this cancellation, please contact our support team.",
    ),
}


def status_copy(status: OrderStatusEnum) -> StatusCopy:
    copy = _STATUS_COPY.get(status)
    if copy is not None:
        return copy
    return StatusCopy(f"Order Status: {status.value}", "Your order status has been updated.")


def format_currency(amount: Decimal | int | float) -> str:
    return f"Rs. {Decimal(str(amount)).quantize(Decimal('0.01'))}"


def render_order_status_update(
    *,
    order_number: str,
    status: OrderStatusEnum,
    grand_total: Decimal,
    contact_name: str | None,
    order_url: str,
) -> RenderedTemplate:
    copy = status_copy(status)
    greeting = f"Hi {contact_name}," if contact_name else "Hi there,"
    subject = f"{copy.title} - Order #{order_number}"

    text_body = "\n".join(
        [
            greeting,
            "",
            copy.message,
            f"Order #{order_number}, total {format_currency(grand_total)}.",
            "",
            f"Track your order: {order_url}",
            "",
            "The YumRun Team",
        ]
    )
    html_body = f"""<html>
  <body>
    <h1>{html.escape(copy.title)}</h1>
    <p>{html.escape(greeting)}</p>
    <p><strong>{html.escape(copy.message)}</strong></p>
    <p>Order <strong>#{html.escape(order_number)}</strong>, total {format_currency(grand_total)}.</p>
    <p><a href="{html.escape(order_url)}">Track your order</a></p>
    <p>The YumRun Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_loyalty_tier_upgrade(
    *,
    tier_name: str,
    perks: Sequence[str],
    contact_name: str | None,
) -> RenderedTemplate:
    """Render notification when a member moves to a new tier."""

    greeting = f"Hi {contact_name}," if contact_name else "Hi there,"
    subject = f"You've reached {tier_name.title()} status on YumRun"

    text_lines = [
        greeting,
        "",
        f"Congratulations! You are now a {tier_name.title()} member.",
    ]
    if perks:
        text_lines.extend(["", "Your benefits:"])
        text_lines.extend(f"- {perk}" for perk in perks)
    text_lines.extend(["", "The YumRun Team"])

    perk_items = "".join(f"<li>{html.escape(perk)}</li>" for perk in perks)
    perks_html = f"<h3>Your benefits</h3><ul>{perk_items}</ul>" if perks else ""
    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    <p>Congratulations! You are now a <strong>{html.escape(tier_name.title())}</strong> member.</p>
    {perks_html}
    <p>The YumRun Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


def render_loyalty_tier_downgrade(
    *,
    tier_name: str,
    previous_tier_name: str,
    perks: Sequence[str],
    contact_name: str | None,
) -> RenderedTemplate:
    """Render notification when tier thresholds move a member to a lower tier."""

    greeting = f"Hi {contact_name}," if contact_name else "Hi there,"
    subject = f"Your YumRun loyalty tier is now {tier_name.title()}"
    summary = (
        f"Our loyalty tiers have been updated and your membership has moved from "
        f"{previous_tier_name.title()} to {tier_name.title()}."
    )

    text_lines = [greeting, "", summary, "Your points balance is unchanged."]
    if perks:
        text_lines.extend(["", "Your benefits:"])
        text_lines.extend(f"- {perk}" for perk in perks)
    text_lines.extend(["", "The YumRun Team"])

    perk_items = "".join(f"<li>{html.escape(perk)}</li>" for perk in perks)
    perks_html = f"<h3>Your benefits</h3><ul>{perk_items}</ul>" if perks else ""
    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    <p>{html.escape(summary)} Your points balance is unchanged.</p>
    {perks_html}
    <p>The YumRun Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)
