"""Customer email notifications sent through the Resend HTTP API.

Notification failures are logged and reported as ``False``; they never turn
into fulfillment failures.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Optional

import httpx

from louiemae.config import settings
from louiemae.utils.logger import logger


@dataclass
class ShippingNotification:
    customer_email: str
    order_id: str
    tracking_number: str
    tracking_url: str
    carrier: str
    customer_name: Optional[str] = None
    estimated_delivery: Optional[str] = None


def render_shipping_email(notification: ShippingNotification) -> str:
    name = html.escape(notification.customer_name or "there")
    carrier = html.escape(notification.carrier or "Standard Shipping")
    number = html.escape(notification.tracking_number)
    url = html.escape(notification.tracking_url, quote=True)
    eta = ""
    if notification.estimated_delivery:
        eta = f"<p>Estimated delivery: {html.escape(notification.estimated_delivery)}</p>"

    return (
        "<div style=\"font-family: Georgia, serif; color: #4A3B32; max-width: 600px; margin: 0 auto;\">"
        f"<h1 style=\"font-weight: normal;\">Your order is on its way</h1>"
        f"<p>Hi {name},</p>"
        f"<p>Order <strong>{html.escape(notification.order_id)}</strong> has shipped with {carrier}.</p>"
        f"<p>Tracking number: <strong>{number}</strong></p>"
        f"{eta}"
        f"<p><a href=\"{url}\" style=\"color: #8B6F47;\">Track your package</a></p>"
        "<p>Thank you for shopping with Louie Mae.</p>"
        "</div>"
    )


async def send_shipping_notification(notification: ShippingNotification) -> bool:
    """Email the customer that their order shipped. Returns True when accepted."""

    if not settings.RESEND_API_KEY:
        logger.warning(
            "[notifier] RESEND_API_KEY not configured; skipping shipping email for order %s",
            notification.order_id,
        )
        return False

    payload = {
        "from": settings.EMAIL_FROM,
        "to": [notification.customer_email],
        "subject": f"Your order has shipped - {notification.order_id}",
        "html": render_shipping_email(notification),
    }
    headers = {
        "Authorization": f"Bearer {settings.RESEND_API_KEY}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0)) as client:
            resp = await client.post(settings.RESEND_API_URL, json=payload, headers=headers)
    except httpx.RequestError as exc:
        logger.error("[notifier] Shipping email request failed for order %s: %s", notification.order_id, exc)
        return False

    if resp.status_code >= 400:
        logger.error(
            "[notifier] Shipping email rejected for order %s: status=%s body=%s",
            notification.order_id, resp.status_code, resp.text[:500],
        )
        return False

    logger.info("[notifier] Shipping email sent for order %s", notification.order_id)
    return True
