import pytest

from louiemae.models_sqlalchemy.models import CjEvent, FulfillmentStatus, OrderStatus, SourcingStatus
from louiemae.services import cj_webhooks
from louiemae.services.cj_variants import list_external_variants
from louiemae.services.cj_webhooks import (
    CjWebhookError,
    handle_cj_webhook,
    map_logistic_status,
    map_order_status,
)


def envelope(event_type, params, message_id="msg-1", message_type="UPDATE"):
    return {"messageId": message_id, "type": event_type, "messageType": message_type, "params": params}


def events(db):
    return db.query(CjEvent).order_by(CjEvent.created_at.asc()).all()


@pytest.mark.parametrize("payload", [
    None,
    [],
    {"type": "ORDER", "params": {}},
    {"messageId": "msg-1", "params": {}},
    {"messageId": "", "type": "ORDER"},
])
@pytest.mark.asyncio
async def test_invalid_envelope_is_rejected_and_not_recorded(db, payload):
    with pytest.raises(CjWebhookError):
        await handle_cj_webhook(db, payload)

    assert events(db) == []


@pytest.mark.parametrize("value, expected", [
    ("CREATED", FulfillmentStatus.confirmed),
    ("unpaid", FulfillmentStatus.confirmed),
    ("UNSHIPPED", FulfillmentStatus.processing),
    ("SHIPPED", FulfillmentStatus.shipped),
    ("DELIVERED", FulfillmentStatus.delivered),
    ("CANCELLED", FulfillmentStatus.cancelled),
    ("SOMETHING_NEW", None),
    (None, None),
])
def test_map_order_status(value, expected):
    assert map_order_status(value) == expected


def test_map_logistic_status():
    assert map_logistic_status(12, "TN") == FulfillmentStatus.delivered
    assert map_logistic_status("13", None) == FulfillmentStatus.failed
    assert map_logistic_status(14, "TN") == FulfillmentStatus.failed
    assert map_logistic_status(1, "TN") == FulfillmentStatus.shipped
    assert map_logistic_status(None, None) is None


@pytest.mark.asyncio
async def test_order_event_records_cj_id_and_confirms(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.sending)

    result = await handle_cj_webhook(db, envelope("ORDER", {
        "orderNumber": order.order_number.lower(),
        "cjOrderId": "CJ-777",
        "orderStatus": "CREATED",
    }))

    assert result == {"success": True, "status": "PROCESSED"}
    db.refresh(order)
    assert order.external_order_id == "CJ-777"
    assert order.fulfillment_status == FulfillmentStatus.confirmed
    assert sent_notifications == []

    [ev] = events(db)
    assert ev.event_type == "ORDER"
    assert ev.entity_id == order.order_number.lower()
    assert ev.status == "PROCESSED"
    assert ev.processed_at is not None
    assert ev.payload["params"]["cjOrderId"] == "CJ-777"


@pytest.mark.asyncio
async def test_order_event_with_tracking_ships_and_notifies_once(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.processing, external_order_id="CJ-1")
    params = {
        "orderNumber": order.order_number,
        "cjOrderId": "CJ-1",
        "orderStatus": "SHIPPED",
        "trackNumber": "9400100000000000000001",
        "logisticName": "USPS",
    }

    await handle_cj_webhook(db, envelope("ORDER", params, message_id="msg-a"))
    await handle_cj_webhook(db, envelope("ORDER", params, message_id="msg-b"))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.shipped
    assert order.status == OrderStatus.shipped
    assert order.tracking_url.startswith("https://tools.usps.com/")
    assert len(sent_notifications) == 1
    assert sorted(ev.message_id for ev in events(db)) == ["msg-a", "msg-b"]


@pytest.mark.asyncio
async def test_unknown_order_status_keeps_current_status(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-2")

    result = await handle_cj_webhook(db, envelope("ORDER", {
        "orderNumber": order.order_number,
        "orderStatus": "AWAITING_QC",
    }))

    assert result["status"] == "PROCESSED"
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.confirmed


@pytest.mark.asyncio
async def test_order_event_falls_back_to_cj_order_id(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-3")

    await handle_cj_webhook(db, envelope("ORDER", {
        "orderNumber": "NOT-OURS",
        "cjOrderId": "CJ-3",
        "orderStatus": "UNSHIPPED",
    }))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.processing


@pytest.mark.asyncio
async def test_unmatched_order_is_ignored(db, sent_notifications):
    result = await handle_cj_webhook(db, envelope("ORDER", {"orderNumber": "ZZZZZZZZZZZZ", "orderStatus": "SHIPPED"}))

    assert result == {"success": True, "status": "IGNORED"}
    [ev] = events(db)
    assert ev.status == "IGNORED"
    assert ev.error == "order not found"


@pytest.mark.asyncio
async def test_logistic_event_ships_then_delivers(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-4")

    await handle_cj_webhook(db, envelope("LOGISTIC", {
        "orderId": "CJ-4",
        "trackingNumber": "1Z999AA10123456784",
        "logisticName": "UPS",
        "trackingStatus": 1,
    }, message_id="msg-ship"))
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.shipped
    assert order.tracking_url == "https://www.ups.com/track?tracknum=1Z999AA10123456784"

    await handle_cj_webhook(db, envelope("LOGISTIC", {
        "orderId": "CJ-4",
        "trackingNumber": "1Z999AA10123456784",
        "trackingStatus": 12,
    }, message_id="msg-delivered"))
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.delivered
    assert order.status == OrderStatus.delivered
    assert len(sent_notifications) == 1


@pytest.mark.asyncio
async def test_logistic_exception_marks_order_failed(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.shipped, external_order_id="CJ-5",
                       tracking_number="LOST1")

    await handle_cj_webhook(db, envelope("LOGISTIC", {"orderId": "CJ-5", "trackingNumber": "LOST1", "trackingStatus": 13}))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.failed
    assert sent_notifications == []


@pytest.mark.asyncio
async def test_product_event_approves_sourced_product(db, make_product):
    product = make_product(external_product_id="PID-42", sourcing_status=SourcingStatus.pending)

    result = await handle_cj_webhook(db, envelope("PRODUCT", {"pid": "PID-42", "productStatus": 22}))

    assert result["status"] == "PROCESSED"
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.approved


@pytest.mark.asyncio
async def test_variant_event_records_cj_variant(db, make_product):
    product = make_product(external_product_id="PID-43", sourcing_status=SourcingStatus.approved)

    result = await handle_cj_webhook(db, envelope("VARIANT", {
        "pid": "PID-43",
        "vid": "VID-43-1",
        "variantSku": "CJ43-OAT-Q",
        "variantValue1": "Oat",
        "variantValue2": "Queen",
        "variantStatus": 22,
        "variantSellPrice": 31.2,
    }, message_type="INSERT"))

    assert result["status"] == "PROCESSED"
    [variant] = list_external_variants(db, product.id)
    assert variant.external_variant_id == "VID-43-1"
    assert variant.name == "Oat - Queen"


@pytest.mark.asyncio
async def test_stock_events_are_recorded_only(db):
    result = await handle_cj_webhook(db, envelope("STOCK", {"vid": "VID-1", "storageNum": 40}))

    assert result == {"success": True, "status": "IGNORED"}
    [ev] = events(db)
    assert ev.event_type == "STOCK"
    assert ev.entity_id == "VID-1"
    assert ev.error == "recorded only"


@pytest.mark.asyncio
async def test_processing_error_is_recorded_not_raised(db, make_order, monkeypatch):
    make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-6")

    async def explode(db, order, update):
        raise RuntimeError("database went away")

    monkeypatch.setattr(cj_webhooks, "apply_tracking_update", explode)

    result = await handle_cj_webhook(db, envelope("LOGISTIC", {"orderId": "CJ-6", "trackingNumber": "TN"}))

    assert result == {"success": True, "status": "FAILED"}
    [ev] = events(db)
    assert ev.status == "FAILED"
    assert "database went away" in ev.error


@pytest.mark.asyncio
async def test_failed_delivery_with_first_tracking_number_sends_no_email(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-9")

    await handle_cj_webhook(db, envelope("LOGISTIC", {"orderId": "CJ-9", "trackingNumber": "1Z9", "trackingStatus": 13}))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.failed
    assert order.tracking_number == "1Z9"
    assert order.status == OrderStatus.paid
    assert sent_notifications == []
