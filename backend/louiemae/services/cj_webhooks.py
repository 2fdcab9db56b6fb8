"""CJ webhook intake.

CJ pushes ``{messageId, type, messageType, params}`` envelopes to a single
callback URL and expects a 200 within a few seconds. Every envelope is written
to the ``cj_events`` inbox first, then dispatched by ``type``:

* ORDER      - order status / tracking, matched by our order number
* LOGISTIC   - tracking status, matched by the CJ order id
* PRODUCT    - sourcing approval or rejection
* VARIANT    - CJ variant reference data for variant linking
* STOCK, ORDERSPLIT and anything else are recorded and acknowledged.

Unknown statuses and unmatched orders are logged and marked IGNORED; they are
never errors towards CJ.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from louiemae.models_sqlalchemy.models import FulfillmentStatus, Order
from louiemae.services.cj_api_client import first_scalar
from louiemae.services.cj_event_inbox import log_cj_event, mark_cj_event
from louiemae.services.cj_sourcing import apply_product_status_event
from louiemae.services.cj_tracking import TrackingUpdate, apply_tracking_update
from louiemae.services.cj_variants import ExternalVariantEvent, upsert_external_variant
from louiemae.utils.logger import logger


class CjWebhookError(ValueError):
    """The envelope is not a CJ webhook (missing messageId or type)."""


ORDER_STATUS_MAP: Dict[str, FulfillmentStatus] = {
    "CREATED": FulfillmentStatus.confirmed,
    "IN_CART": FulfillmentStatus.confirmed,
    "UNPAID": FulfillmentStatus.confirmed,
    "UNSHIPPED": FulfillmentStatus.processing,
    "SHIPPED": FulfillmentStatus.shipped,
    "DELIVERED": FulfillmentStatus.delivered,
    "CANCELLED": FulfillmentStatus.cancelled,
}

LOGISTIC_STATUS_DELIVERED = 12
LOGISTIC_STATUS_FAILED = {13, 14}

# Statuses an order may still be in when CJ first reports its id.
_PRE_CONFIRMED = (None, FulfillmentStatus.pending, FulfillmentStatus.sending)


def map_order_status(value: Any) -> Optional[FulfillmentStatus]:
    if value is None:
        return None
    return ORDER_STATUS_MAP.get(str(value).strip().upper())


def map_logistic_status(tracking_status: Any, tracking_number: Optional[str]) -> Optional[FulfillmentStatus]:
    try:
        code = int(tracking_status)
    except (TypeError, ValueError):
        code = None
    if code == LOGISTIC_STATUS_DELIVERED:
        return FulfillmentStatus.delivered
    if code in LOGISTIC_STATUS_FAILED:
        return FulfillmentStatus.failed
    if tracking_number:
        return FulfillmentStatus.shipped
    return None


def _entity_id(event_type: str, params: Dict[str, Any]) -> Optional[str]:
    keys = {
        "ORDER": ("orderNumber", "cjOrderId"),
        "LOGISTIC": ("orderId",),
        "PRODUCT": ("pid",),
        "VARIANT": ("vid", "pid"),
    }.get(event_type, ("orderId", "pid", "vid"))
    for key in keys:
        value = first_scalar(params.get(key))
        if value:
            return value
    return None


async def _handle_order(db: Session, params: Dict[str, Any]) -> Optional[str]:
    order_number = first_scalar(params.get("orderNumber"))
    external_order_id = first_scalar(params.get("cjOrderId") or params.get("orderId"))
    if not order_number and not external_order_id:
        return "ORDER event without orderNumber"

    order = None
    if order_number:
        order = db.query(Order).filter(Order.order_number == order_number.upper()).first()
    if order is None and external_order_id:
        order = db.query(Order).filter(Order.external_order_id == external_order_id).first()
    if order is None:
        logger.warning(
            "[cj_webhook] ORDER event for unknown order order_number=%s cj_order_id=%s",
            order_number, external_order_id,
        )
        return "order not found"

    status = map_order_status(params.get("orderStatus"))
    if status is None:
        logger.info(
            "[cj_webhook] Ignoring unmapped CJ order status %r for order_id=%s",
            params.get("orderStatus"), order.id,
        )

    if external_order_id and not order.external_order_id:
        order.external_order_id = external_order_id
        if order.fulfillment_status in _PRE_CONFIRMED and status is None:
            status = FulfillmentStatus.confirmed

    await apply_tracking_update(
        db,
        order,
        TrackingUpdate(
            tracking_number=first_scalar(params.get("trackNumber")),
            tracking_url=first_scalar(params.get("trackingUrl")),
            carrier=first_scalar(params.get("logisticName")),
            status=status,
            source="webhook",
        ),
    )
    return None


async def _handle_logistic(db: Session, params: Dict[str, Any]) -> Optional[str]:
    external_order_id = first_scalar(params.get("orderId"))
    if not external_order_id:
        return "LOGISTIC event without orderId"

    order = db.query(Order).filter(Order.external_order_id == external_order_id).first()
    if order is None:
        logger.warning("[cj_webhook] LOGISTIC event for unknown CJ order %s", external_order_id)
        return "order not found"

    tracking_number = first_scalar(params.get("trackingNumber") or params.get("trackNumber"))
    await apply_tracking_update(
        db,
        order,
        TrackingUpdate(
            tracking_number=tracking_number,
            tracking_url=first_scalar(params.get("trackingUrl")),
            carrier=first_scalar(params.get("logisticName")),
            status=map_logistic_status(params.get("trackingStatus"), tracking_number),
            source="webhook",
        ),
    )
    return None


def _handle_product(db: Session, params: Dict[str, Any]) -> Optional[str]:
    pid = first_scalar(params.get("pid"))
    if not pid:
        return "PRODUCT event without pid"
    updated = apply_product_status_event(db, pid, params.get("productStatus"), params.get("statusReason"))
    if not updated:
        logger.info("[cj_webhook] PRODUCT event pid=%s status=%s matched no product", pid, params.get("productStatus"))
        return "no product updated"
    return None


def _handle_variant(db: Session, params: Dict[str, Any]) -> Optional[str]:
    pid = first_scalar(params.get("pid"))
    vid = first_scalar(params.get("vid"))
    if not pid or not vid:
        return "VARIANT event without pid or vid"
    updated = upsert_external_variant(
        db,
        ExternalVariantEvent(
            external_product_id=pid,
            external_variant_id=vid,
            sku=first_scalar(params.get("variantSku")),
            name=first_scalar(params.get("variantName")),
            value1=first_scalar(params.get("variantValue1")),
            value2=first_scalar(params.get("variantValue2")),
            status=params.get("variantStatus"),
            price=params.get("variantSellPrice"),
            image=first_scalar(params.get("variantImage")),
        ),
    )
    if not updated:
        return "no product updated"
    return None


async def handle_cj_webhook(db: Session, payload: Any) -> Dict[str, Any]:
    """Record and process one CJ webhook envelope.

    Raises :class:`CjWebhookError` for envelopes without ``messageId`` or
    ``type``. Processing failures are recorded on the inbox row and do not
    raise.
    """

    if not isinstance(payload, dict):
        raise CjWebhookError("Invalid webhook payload")
    message_id = first_scalar(payload.get("messageId"))
    event_type = (first_scalar(payload.get("type")) or "").upper()
    if not message_id or not event_type:
        raise CjWebhookError("Invalid webhook payload")

    params = payload.get("params") if isinstance(payload.get("params"), dict) else {}
    ev = log_cj_event(
        payload=payload,
        message_id=message_id,
        event_type=event_type,
        message_type=first_scalar(payload.get("messageType")),
        entity_id=_entity_id(event_type, params),
        db=db,
    )
    db.commit()
    logger.info("[cj_webhook] Received %s message_id=%s entity=%s", event_type, message_id, ev.entity_id)

    try:
        if event_type == "ORDER":
            ignored = await _handle_order(db, params)
        elif event_type == "LOGISTIC":
            ignored = await _handle_logistic(db, params)
        elif event_type == "PRODUCT":
            ignored = _handle_product(db, params)
        elif event_type == "VARIANT":
            ignored = _handle_variant(db, params)
        elif event_type in ("STOCK", "ORDERSPLIT"):
            ignored = "recorded only"
        else:
            logger.info("[cj_webhook] Unknown CJ webhook type %s message_id=%s", event_type, message_id)
            ignored = "unknown type"
    except Exception as exc:
        db.rollback()
        logger.error("[cj_webhook] Failed to process %s message_id=%s: %s", event_type, message_id, exc, exc_info=True)
        mark_cj_event(db, ev, "FAILED", str(exc))
        return {"success": True, "status": "FAILED"}

    status = "IGNORED" if ignored else "PROCESSED"
    mark_cj_event(db, ev, status, ignored)
    return {"success": True, "status": status}
