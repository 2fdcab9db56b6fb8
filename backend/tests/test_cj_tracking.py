import pytest

from louiemae.models_sqlalchemy.models import FulfillmentStatus, OrderStatus
from louiemae.services.cj_api_client import CjApiError, cj_client
from louiemae.services.cj_tracking import (
    TrackingUpdate,
    apply_tracking_update,
    build_tracking_url,
    sync_all_tracking,
)

from conftest import fail, hours_ago, ok


class FakeTrackingApi:
    def __init__(self):
        self.responses = {}
        self.requested = []

    async def get_track_info(self, token, external_order_id):
        self.requested.append(external_order_id)
        response = self.responses.get(external_order_id, ok({}))
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def cj_api(monkeypatch):
    fake = FakeTrackingApi()
    monkeypatch.setattr(cj_client, "get_track_info", fake.get_track_info)
    return fake


@pytest.mark.parametrize("carrier, expected", [
    ("USPS", "https://tools.usps.com/go/TrackConfirmAction?tLabels=TN1"),
    ("FedEx Ground", "https://www.fedex.com/apps/fedextrack/?tracknumbers=TN1"),
    ("UPS", "https://www.ups.com/track?tracknum=TN1"),
    ("DHL Express", "https://www.dhl.com/en/express/tracking.html?AWB=TN1"),
    ("CJ Packet Ordinary", "https://t.17track.net/en#nums=TN1"),
    (None, "https://t.17track.net/en#nums=TN1"),
])
def test_build_tracking_url(carrier, expected):
    assert build_tracking_url("TN1", carrier) == expected


@pytest.mark.asyncio
async def test_poll_marks_stale_confirmed_order_shipped(db, make_order, cj_token, cj_api, sent_notifications):
    order = make_order(
        fulfillment_status=FulfillmentStatus.confirmed,
        external_order_id="CJ-1",
        last_sync_at=hours_ago(2),
    )
    cj_api.responses["CJ-1"] = ok({"trackNumber": "1Z999", "logisticName": "UPS"})

    summary = await sync_all_tracking(db, delay_seconds=0)

    assert summary == {"synced": 1, "errors": 0}
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.shipped
    assert order.status == OrderStatus.shipped
    assert order.tracking_number == "1Z999"
    assert order.tracking_url == "https://www.ups.com/track?tracknum=1Z999"
    assert order.carrier == "UPS"
    assert order.shipped_at is not None
    assert len(sent_notifications) == 1
    assert sent_notifications[0].tracking_number == "1Z999"
    assert sent_notifications[0].order_id == order.order_number


@pytest.mark.asyncio
async def test_poll_skips_recently_synced_orders(db, make_order, cj_token, cj_api, sent_notifications):
    make_order(
        fulfillment_status=FulfillmentStatus.confirmed,
        external_order_id="CJ-RECENT",
        last_sync_at=hours_ago(0.5),
    )

    summary = await sync_all_tracking(db, delay_seconds=0)

    assert summary == {"synced": 0, "errors": 0}
    assert cj_api.requested == []


@pytest.mark.asyncio
async def test_poll_selects_only_open_orders(db, make_order, cj_token, cj_api, sent_notifications):
    make_order(session_id="cs_never_synced_0000001", fulfillment_status=FulfillmentStatus.processing,
               external_order_id="CJ-NEW")
    make_order(session_id="cs_already_shipped_0002", fulfillment_status=FulfillmentStatus.shipped,
               external_order_id="CJ-SHIPPED", tracking_number="TN")
    make_order(session_id="cs_failed_order_0000003", fulfillment_status=FulfillmentStatus.failed)

    await sync_all_tracking(db, delay_seconds=0)

    assert cj_api.requested == ["CJ-NEW"]


@pytest.mark.asyncio
async def test_poll_without_tracking_number_only_stamps_sync(db, make_order, cj_token, cj_api, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-2")
    cj_api.responses["CJ-2"] = ok({"trackNumber": "", "logisticName": "CJ Packet Ordinary"})

    summary = await sync_all_tracking(db, delay_seconds=0)

    assert summary["synced"] == 0
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.confirmed
    assert order.last_sync_at is not None
    assert sent_notifications == []


@pytest.mark.asyncio
async def test_poll_counts_per_order_errors(db, make_order, cj_token, cj_api, sent_notifications):
    make_order(session_id="cs_broken_00000000001", fulfillment_status=FulfillmentStatus.confirmed,
               external_order_id="CJ-BROKEN")
    healthy = make_order(session_id="cs_healthy_0000000002", fulfillment_status=FulfillmentStatus.confirmed,
                         external_order_id="CJ-OK")
    cj_api.responses["CJ-BROKEN"] = CjApiError("CJ API HTTP 503 on logistic/getTrackInfo")
    cj_api.responses["CJ-OK"] = ok([{"trackNumber": "9400111", "logisticName": "USPS"}])

    summary = await sync_all_tracking(db, delay_seconds=0)

    assert summary == {"synced": 1, "errors": 1}
    db.refresh(healthy)
    assert healthy.tracking_url == "https://tools.usps.com/go/TrackConfirmAction?tLabels=9400111"


@pytest.mark.asyncio
async def test_poll_provider_rejection_is_not_an_error(db, make_order, cj_token, cj_api, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-3")
    cj_api.responses["CJ-3"] = fail("order not found")

    summary = await sync_all_tracking(db, delay_seconds=0)

    assert summary == {"synced": 0, "errors": 0}
    db.refresh(order)
    assert order.last_sync_at is not None


@pytest.mark.asyncio
async def test_same_tracking_number_twice_notifies_once(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-4")
    update = TrackingUpdate(tracking_number="LX123", carrier="DHL", source="webhook")

    first = await apply_tracking_update(db, order, update)
    db.refresh(order)
    state_after_first = (order.fulfillment_status, order.tracking_number, order.tracking_url, order.shipped_at)

    second = await apply_tracking_update(db, order, update)
    db.refresh(order)

    assert first is True
    assert second is False
    assert len(sent_notifications) == 1
    assert (order.fulfillment_status, order.tracking_number, order.tracking_url, order.shipped_at) == state_after_first


@pytest.mark.asyncio
async def test_changed_tracking_number_notifies_again(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-5")

    await apply_tracking_update(db, order, TrackingUpdate(tracking_number="OLD1", carrier="UPS"))
    await apply_tracking_update(db, order, TrackingUpdate(tracking_number="NEW2", carrier="UPS"))

    db.refresh(order)
    assert order.tracking_number == "NEW2"
    assert order.tracking_url == "https://www.ups.com/track?tracknum=NEW2"
    assert [n.tracking_number for n in sent_notifications] == ["OLD1", "NEW2"]


@pytest.mark.asyncio
async def test_tracked_order_does_not_regress_to_processing(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.shipped, external_order_id="CJ-6",
                       tracking_number="TN6", carrier="UPS")

    await apply_tracking_update(db, order, TrackingUpdate(status=FulfillmentStatus.processing))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.shipped
    assert sent_notifications == []


@pytest.mark.asyncio
async def test_delivered_syncs_customer_status(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.shipped, external_order_id="CJ-7",
                       tracking_number="TN7")

    await apply_tracking_update(db, order, TrackingUpdate(status=FulfillmentStatus.delivered))

    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.delivered
    assert order.status == OrderStatus.delivered


@pytest.mark.asyncio
async def test_notifier_failure_does_not_break_update(db, make_order, monkeypatch):
    from louiemae.services import cj_tracking

    async def broken_send(notification):
        raise RuntimeError("resend down")

    monkeypatch.setattr(cj_tracking, "send_shipping_notification", broken_send)
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-8")

    notified = await apply_tracking_update(db, order, TrackingUpdate(tracking_number="TN8"))

    assert notified is False
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.shipped
    assert order.carrier == "Standard Shipping"


@pytest.mark.asyncio
async def test_cancelled_order_gaining_tracking_is_not_announced(db, make_order, sent_notifications):
    order = make_order(fulfillment_status=FulfillmentStatus.confirmed, external_order_id="CJ-9")

    notified = await apply_tracking_update(
        db, order, TrackingUpdate(tracking_number="TN9", status=FulfillmentStatus.cancelled, source="webhook"),
    )

    assert notified is False
    db.refresh(order)
    assert order.fulfillment_status == FulfillmentStatus.cancelled
    assert order.tracking_number == "TN9"
    assert sent_notifications == []
