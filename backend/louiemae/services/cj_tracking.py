"""Shipment tracking reconciliation.

Two producers feed the same command: the periodic polling sweep
(:func:`sync_all_tracking`) and the CJ webhook intake
(``louiemae.services.cj_webhooks``). Both build a :class:`TrackingUpdate` and
hand it to :func:`apply_tracking_update`, which owns the merge rules and the
decision to email the customer.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import quote

from sqlalchemy import or_
from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy.models import FulfillmentStatus, Order, OrderStatus
from louiemae.services.cj_api_client import CjApiError, cj_client, first_scalar, normalize_record
from louiemae.services.cj_token_provider import get_access_token
from louiemae.services.notifier import ShippingNotification, send_shipping_notification
from louiemae.utils.logger import logger


SYNC_THROTTLE = timedelta(hours=1)
SYNCABLE_STATUSES = (FulfillmentStatus.confirmed, FulfillmentStatus.processing)

# Statuses a tracking number can not promote past.
TERMINAL_STATUSES = (
    FulfillmentStatus.shipped,
    FulfillmentStatus.delivered,
    FulfillmentStatus.failed,
    FulfillmentStatus.cancelled,
)

# Provider-reported delivery failures may carry a tracking number; the
# customer is not told the parcel is on its way.
NO_NOTIFY_STATUSES = (FulfillmentStatus.failed, FulfillmentStatus.cancelled)

# Customer-facing status follows fulfillment only once the parcel moves.
CUSTOMER_STATUS_SYNC = {
    FulfillmentStatus.shipped: OrderStatus.shipped,
    FulfillmentStatus.delivered: OrderStatus.delivered,
}

DEFAULT_CARRIER = "Standard Shipping"

_CARRIER_URLS = (
    ("USPS", "https://tools.usps.com/go/TrackConfirmAction?tLabels={n}"),
    ("FEDEX", "https://www.fedex.com/apps/fedextrack/?tracknumbers={n}"),
    ("UPS", "https://www.ups.com/track?tracknum={n}"),
    ("DHL", "https://www.dhl.com/en/express/tracking.html?AWB={n}"),
)
_GENERIC_TRACKER_URL = "https://t.17track.net/en#nums={n}"


@dataclass
class TrackingUpdate:
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    carrier: Optional[str] = None
    status: Optional[FulfillmentStatus] = None
    estimated_delivery: Optional[str] = None
    source: str = "poll"


def build_tracking_url(tracking_number: str, carrier: Optional[str] = None) -> str:
    number = quote(tracking_number.strip(), safe="")
    name = (carrier or "").upper().replace(" ", "")
    for key, template in _CARRIER_URLS:
        if key in name:
            return template.format(n=number)
    return _GENERIC_TRACKER_URL.format(n=number)


async def apply_tracking_update(db: Session, order: Order, update: TrackingUpdate) -> bool:
    """Merge a tracking update into ``order``.

    Returns True when a shipment notification was sent. The customer is
    emailed only when the order gains a tracking number it did not have
    before and is not failed or cancelled, so repeated pushes of the same
    number are no-ops.
    """

    now = datetime.now(timezone.utc)
    new_number = (update.tracking_number or "").strip() or None
    newly_tracked = bool(new_number) and new_number != order.tracking_number

    status = update.status or order.fulfillment_status
    if (new_number or order.tracking_number) and status not in TERMINAL_STATUSES:
        status = FulfillmentStatus.shipped

    if status is not None and status != order.fulfillment_status:
        logger.info(
            "[cj_tracking] order_id=%s fulfillment %s -> %s (source=%s)",
            order.id,
            order.fulfillment_status.value if order.fulfillment_status else None,
            status.value,
            update.source,
        )
        order.fulfillment_status = status

    customer_status = CUSTOMER_STATUS_SYNC.get(order.fulfillment_status)
    if customer_status is not None:
        order.status = customer_status

    if new_number:
        order.tracking_number = new_number
        order.carrier = update.carrier or order.carrier or DEFAULT_CARRIER
        if update.tracking_url:
            order.tracking_url = update.tracking_url
        elif newly_tracked or not order.tracking_url:
            order.tracking_url = build_tracking_url(new_number, order.carrier)
        if order.shipped_at is None:
            order.shipped_at = now

    order.last_sync_at = now
    db.commit()

    if not newly_tracked:
        return False
    if order.fulfillment_status in NO_NOTIFY_STATUSES:
        logger.info(
            "[cj_tracking] order_id=%s got tracking while %s, not notifying customer",
            order.id, order.fulfillment_status.value,
        )
        return False

    notification = ShippingNotification(
        customer_email=order.customer_email,
        customer_name=order.customer_name,
        order_id=order.order_number,
        tracking_number=order.tracking_number,
        tracking_url=order.tracking_url,
        carrier=order.carrier or DEFAULT_CARRIER,
        estimated_delivery=update.estimated_delivery,
    )
    try:
        return await send_shipping_notification(notification)
    except Exception as exc:
        logger.error("[cj_tracking] Shipping notification failed for order_id=%s: %s", order.id, exc)
        return False


def tracking_update_from_track_info(data) -> TrackingUpdate:
    record = normalize_record(data)
    return TrackingUpdate(
        tracking_number=first_scalar(record.get("trackNumber") or record.get("trackingNumber")),
        tracking_url=first_scalar(record.get("trackingUrl")),
        carrier=first_scalar(record.get("logisticName")),
        source="poll",
    )


def _orders_due_for_sync(db: Session, now: datetime):
    cutoff = now - SYNC_THROTTLE
    return (
        db.query(Order)
        .filter(Order.fulfillment_status.in_(SYNCABLE_STATUSES))
        .filter(Order.external_order_id.isnot(None))
        .filter(or_(Order.last_sync_at.is_(None), Order.last_sync_at < cutoff))
        .order_by(Order.created_at.asc())
        .all()
    )


async def sync_all_tracking(
    db: Session,
    *,
    now: Optional[datetime] = None,
    delay_seconds: Optional[float] = None,
) -> Dict[str, int]:
    """Poll CJ for tracking on every order due for a sync."""

    now = now or datetime.now(timezone.utc)
    delay = settings.CJ_SWEEP_DELAY_SECONDS if delay_seconds is None else delay_seconds
    summary = {"synced": 0, "errors": 0}

    orders = _orders_due_for_sync(db, now)
    if not orders:
        logger.info("[cj_tracking] No orders due for tracking sync")
        return summary

    token = await get_access_token(db, triggered_by="tracking_sync")
    if not token:
        logger.error("[cj_tracking] Skipping tracking sync for %d orders: no CJ token", len(orders))
        summary["errors"] = len(orders)
        return summary

    for idx, order in enumerate(orders):
        if idx and delay > 0:
            await asyncio.sleep(delay)
        try:
            resp = await cj_client.get_track_info(token, order.external_order_id)
            if not resp.result:
                logger.warning(
                    "[cj_tracking] No tracking for order_id=%s external_order_id=%s: %s",
                    order.id, order.external_order_id, resp.error_message,
                )
                order.last_sync_at = datetime.now(timezone.utc)
                db.commit()
                continue

            update = tracking_update_from_track_info(resp.data)
            if update.tracking_number:
                await apply_tracking_update(db, order, update)
                summary["synced"] += 1
            else:
                order.last_sync_at = datetime.now(timezone.utc)
                db.commit()
        except CjApiError as exc:
            summary["errors"] += 1
            logger.error("[cj_tracking] CJ tracking request failed for order_id=%s: %s", order.id, exc)
        except Exception as exc:
            db.rollback()
            summary["errors"] += 1
            logger.error("[cj_tracking] Tracking sync failed for order_id=%s: %s", order.id, exc, exc_info=True)

    logger.info("[cj_tracking] Tracking sync done synced=%d errors=%d", summary["synced"], summary["errors"])
    return summary
