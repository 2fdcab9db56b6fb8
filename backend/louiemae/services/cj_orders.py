"""Forwarding paid storefront orders to CJ for fulfillment.

The CJ ``orderNumber`` is derived from the payment session id (last 12
characters, uppercased), so a resubmitted order identifies itself to CJ.
Duplicate protection beyond that is CJ's concern; failed orders stay
``failed`` until an admin resets and resubmits them.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy.models import FulfillmentStatus, Order
from louiemae.services.cj_api_client import cj_client, extract_id
from louiemae.services.cj_token_provider import get_access_token
from louiemae.utils.logger import logger


AUTH_FAILED_MESSAGE = "Failed to authenticate with CJ API"
NO_LINES_MESSAGE = "No CJ products found in order (missing vid/sku)"
NO_ADDRESS_MESSAGE = "Order has no shipping address"

ORDER_NUMBER_LENGTH = 12

COUNTRY_CODES: Dict[str, str] = {
    "United States": "US",
    "USA": "US",
    "US": "US",
    "Canada": "CA",
    "United Kingdom": "GB",
    "UK": "GB",
    "GB": "GB",
    "Australia": "AU",
    "Germany": "DE",
    "France": "FR",
    "Italy": "IT",
    "Spain": "ES",
    "Netherlands": "NL",
    "Belgium": "BE",
    "Austria": "AT",
    "Switzerland": "CH",
    "Sweden": "SE",
    "Norway": "NO",
    "Denmark": "DK",
    "Finland": "FI",
    "Ireland": "IE",
    "Portugal": "PT",
    "Poland": "PL",
    "Japan": "JP",
    "South Korea": "KR",
    "Mexico": "MX",
    "Brazil": "BR",
    "New Zealand": "NZ",
    "Singapore": "SG",
}
_COUNTRY_CODES_UPPER = {name.upper(): code for name, code in COUNTRY_CODES.items()}

# Orders in these states may be (re)sent to CJ.
SUBMITTABLE_STATUSES = (None, FulfillmentStatus.pending)


@dataclass
class FulfillmentResult:
    success: bool
    external_order_id: Optional[str] = None
    error: Optional[str] = None


def order_number_for_session(session_id: str) -> str:
    return (session_id or "")[-ORDER_NUMBER_LENGTH:].upper()


def country_code_for(country: Optional[str]) -> str:
    """ISO 3166 alpha-2 code for a free-text country name.

    Unknown names fall back to their first two letters, uppercased.
    """

    name = (country or "").strip()
    return COUNTRY_CODES.get(name) or _COUNTRY_CODES_UPPER.get(name.upper()) or name.upper()[:2]


def build_order_lines(order: Order) -> List[Dict[str, Any]]:
    """CJ product lines for an order; lines without vid and sku are dropped."""

    lines: List[Dict[str, Any]] = []
    for item in order.items:
        if not item.is_externally_sourced:
            continue
        line: Dict[str, Any] = {"quantity": int(item.quantity or 1)}
        if item.external_variant_id:
            line["vid"] = item.external_variant_id
        if item.external_sku:
            line["sku"] = item.external_sku
        lines.append(line)
    return lines


def build_order_payload(order: Order, lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    address = order.shipping_address or {}
    return {
        "orderNumber": order.order_number,
        "shippingCustomerName": order.customer_name or "Customer",
        "shippingPhone": order.customer_phone or "",
        "shippingAddress": address.get("line1", ""),
        "shippingAddress2": address.get("line2") or "",
        "shippingCity": address.get("city", ""),
        "shippingProvince": address.get("state") or address.get("city", ""),
        "shippingCountry": address.get("country", ""),
        "shippingCountryCode": country_code_for(address.get("country")),
        "shippingZip": address.get("postalCode") or address.get("postal_code") or "",
        "email": order.customer_email,
        "logisticName": settings.CJ_DEFAULT_LOGISTIC_NAME,
        "fromCountryCode": settings.CJ_FROM_COUNTRY_CODE,
        "payType": settings.CJ_PAY_TYPE,
        "products": lines,
    }


def _set_fulfillment_status(
    db: Session,
    order: Order,
    status: FulfillmentStatus,
    *,
    external_order_id: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    order.fulfillment_status = status
    if external_order_id:
        order.external_order_id = external_order_id
    order.fulfillment_error = error
    order.last_sync_at = datetime.now(timezone.utc)
    db.commit()


def _fail(db: Session, order: Order, error: str) -> FulfillmentResult:
    _set_fulfillment_status(db, order, FulfillmentStatus.failed, error=error)
    logger.error("[cj_orders] Fulfillment failed order_id=%s: %s", order.id, error)
    return FulfillmentResult(success=False, error=error)


async def create_fulfillment_order(db: Session, order: Order) -> FulfillmentResult:
    """Create the CJ order for a paid storefront order."""

    if order.external_order_id:
        return FulfillmentResult(
            success=False,
            external_order_id=order.external_order_id,
            error=f"Order already exists at CJ as {order.external_order_id}",
        )
    if order.fulfillment_status not in SUBMITTABLE_STATUSES:
        return FulfillmentResult(
            success=False,
            error=f"Order fulfillment is {order.fulfillment_status.value}; reset it before resubmitting",
        )

    _set_fulfillment_status(db, order, FulfillmentStatus.sending)

    lines = build_order_lines(order)
    if not lines:
        return _fail(db, order, NO_LINES_MESSAGE)
    if not order.shipping_address:
        return _fail(db, order, NO_ADDRESS_MESSAGE)

    token = await get_access_token(db, triggered_by="order_create")
    if not token:
        return _fail(db, order, AUTH_FAILED_MESSAGE)

    payload = build_order_payload(order, lines)
    try:
        resp = await cj_client.create_order(token, payload)
    except Exception as exc:
        return _fail(db, order, str(exc) or "Network error contacting CJ API")

    external_order_id = extract_id(resp.data, "orderId", "cjOrderId") if resp.result else None
    if not external_order_id:
        return _fail(db, order, resp.error_message if not resp.result else "CJ did not return an order id")

    _set_fulfillment_status(db, order, FulfillmentStatus.confirmed, external_order_id=external_order_id)
    logger.info(
        "[cj_orders] CJ order created order_id=%s order_number=%s external_order_id=%s lines=%d",
        order.id, order.order_number, external_order_id, len(lines),
    )
    return FulfillmentResult(success=True, external_order_id=external_order_id)


def reset_fulfillment(db: Session, order_id: str) -> Order:
    """Put a failed order back to ``pending`` so it can be submitted again.

    Does not contact CJ. Orders already created at CJ, or still being sent,
    cannot be reset.
    """

    order = db.get(Order, order_id)
    if order is None:
        raise LookupError(f"Order {order_id} not found")
    if order.external_order_id:
        raise ValueError(f"Order already exists at CJ as {order.external_order_id}")
    if order.fulfillment_status != FulfillmentStatus.failed:
        current = order.fulfillment_status.value if order.fulfillment_status else "none"
        raise ValueError(f"Only failed orders can be retried (fulfillment status is {current})")
    if not any(item.is_externally_sourced for item in order.items):
        raise ValueError("Order has no CJ products to fulfill")

    order.fulfillment_status = FulfillmentStatus.pending
    order.fulfillment_error = None
    db.commit()
    logger.info("[cj_orders] Fulfillment reset to pending order_id=%s", order_id)
    return order


def list_orders_by_fulfillment(db: Session, status: FulfillmentStatus) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.fulfillment_status == status)
        .order_by(Order.created_at.desc())
        .all()
    )
