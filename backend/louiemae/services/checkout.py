"""Intake of paid storefront orders.

Called once the payment provider reports a completed checkout. The order is
stored idempotently by session id; if any line ships from CJ the order is
forwarded for fulfillment straight away. A fulfillment failure never fails
intake: the order is kept as ``failed`` for an admin to retry.
"""
from __future__ import annotations

from typing import Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from louiemae.models.checkout import CheckoutCompletedEvent
from louiemae.models_sqlalchemy.models import FulfillmentStatus, Order, OrderItem, OrderStatus
from louiemae.services.cj_orders import create_fulfillment_order, order_number_for_session
from louiemae.services.cj_variants import resolve_line_identifiers
from louiemae.utils.logger import logger


def _build_order(db: Session, event: CheckoutCompletedEvent) -> Order:
    order = Order(
        session_id=event.sessionId,
        order_number=order_number_for_session(event.sessionId),
        payment_intent_id=event.paymentIntentId,
        customer_email=event.customerEmail,
        customer_name=event.customerName,
        customer_phone=event.customerPhone,
        subtotal=event.subtotal,
        shipping=event.shipping,
        tax=event.tax,
        total=event.total,
        currency=event.currency,
        shipping_address=event.shippingAddress.model_dump() if event.shippingAddress else None,
        status=OrderStatus.paid,
    )

    for position, item in enumerate(event.items):
        vid, sku = item.cjVariantId, item.cjSku
        if not (vid or sku):
            vid, sku = resolve_line_identifiers(db, item.productId, item.variantId)
        order.items.append(
            OrderItem(
                position=position,
                product_id=item.productId,
                variant_id=item.variantId,
                variant_name=item.variantName,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                image=item.image,
                external_variant_id=vid,
                external_sku=sku,
            )
        )

    if any(line.is_externally_sourced for line in order.items):
        order.fulfillment_status = FulfillmentStatus.pending
    return order


async def record_paid_order(db: Session, event: CheckoutCompletedEvent) -> Tuple[Order, bool]:
    """Store the paid order and forward it to CJ. Returns ``(order, created)``."""

    existing = db.query(Order).filter(Order.session_id == event.sessionId).one_or_none()
    if existing is not None:
        logger.info("[checkout] Duplicate completion for session %s, order_id=%s", event.sessionId, existing.id)
        return existing, False

    order = _build_order(db, event)
    db.add(order)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent delivery of the same session won the insert
        db.rollback()
        existing = db.query(Order).filter(Order.session_id == event.sessionId).one_or_none()
        if existing is None:
            raise
        logger.info("[checkout] Concurrent completion for session %s, order_id=%s", event.sessionId, existing.id)
        return existing, False
    db.refresh(order)
    logger.info(
        "[checkout] Recorded paid order order_id=%s order_number=%s items=%d fulfillment=%s",
        order.id, order.order_number, len(order.items),
        order.fulfillment_status.value if order.fulfillment_status else None,
    )

    if order.fulfillment_status == FulfillmentStatus.pending:
        try:
            await create_fulfillment_order(db, order)
        except Exception as exc:
            db.rollback()
            logger.error("[checkout] Forwarding order_id=%s to CJ failed: %s", order.id, exc, exc_info=True)

    return order, True
