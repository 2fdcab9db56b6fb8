import pytest

from louiemae.models_sqlalchemy.models import Product, SourcingStatus
from louiemae.services import cj_sourcing
from louiemae.services.cj_api_client import CjApiError, cj_client
from louiemae.services.cj_sourcing import (
    auto_submit_pending,
    build_sourcing_payload,
    cancel_sourcing_and_delete,
    check_sourcing_status,
    interpret_sourcing_status,
    list_storefront_products,
    resubmit_sourcing,
    submit_for_sourcing,
)

from conftest import fail, ok


class FakeSourcingApi:
    def __init__(self):
        self.created = []
        self.queried = []
        self.cancelled = []
        self.create_response = ok({"cjSourcingId": "SRC-1"})
        self.query_responses = {}
        self.cancel_response = ok(True)

    async def create_sourcing(self, token, payload):
        self.created.append(payload)
        if isinstance(self.create_response, Exception):
            raise self.create_response
        return self.create_response

    async def query_sourcing(self, token, sourcing_ids):
        self.queried.extend(sourcing_ids)
        response = self.query_responses.get(sourcing_ids[0], ok([{"sourceStatus": "2"}]))
        if isinstance(response, Exception):
            raise response
        return response

    async def cancel_sourcing(self, token, sourcing_id):
        self.cancelled.append(sourcing_id)
        return self.cancel_response


@pytest.fixture()
def cj_api(monkeypatch):
    fake = FakeSourcingApi()
    monkeypatch.setattr(cj_client, "create_sourcing", fake.create_sourcing)
    monkeypatch.setattr(cj_client, "query_sourcing", fake.query_sourcing)
    monkeypatch.setattr(cj_client, "cancel_sourcing", fake.cancel_sourcing)
    return fake


@pytest.mark.asyncio
async def test_submit_records_sourcing_id_and_pending(db, make_product, cj_token, cj_api):
    product = make_product()

    result = await submit_for_sourcing(db, product)

    assert result.success is True
    assert result.sourcing_id == "SRC-1"
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
    assert product.sourcing_id == "SRC-1"
    assert product.submitted_at is not None
    assert cj_api.created[0]["productUrl"] == "https://www.aliexpress.com/item/1005001.html"
    assert cj_api.created[0]["productImage"] == "https://img.example.com/pillow.jpg"
    assert cj_api.created[0]["thirdProductId"] == product.id


@pytest.mark.asyncio
async def test_sourcing_id_is_unwrapped_from_array(db, make_product, cj_token, cj_api):
    cj_api.create_response = ok({"cjSourcingId": ["SRC-ARRAY"]})
    product = make_product()

    result = await submit_for_sourcing(db, product)

    assert result.sourcing_id == "SRC-ARRAY"


@pytest.mark.asyncio
async def test_imageless_product_fails_before_network(db, make_product, cj_token, cj_api):
    product = make_product(images=[])

    result = await submit_for_sourcing(db, product)

    assert result.success is False
    assert "image" in result.error
    assert cj_api.created == []
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
    assert product.sourcing_error is None


@pytest.mark.asyncio
async def test_missing_source_url_is_reported_first(db, make_product, cj_token, cj_api):
    product = make_product(source_url=None, images=[])

    result = await submit_for_sourcing(db, product)

    assert "source URL" in result.error
    assert cj_api.created == []


@pytest.mark.asyncio
async def test_provider_rejection_marks_rejected_with_message(db, make_product, cj_token, cj_api):
    cj_api.create_response = fail("Product link is not supported")
    product = make_product()

    result = await submit_for_sourcing(db, product)

    assert result.success is False
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.rejected
    assert product.sourcing_error == "Product link is not supported"


@pytest.mark.asyncio
async def test_auth_failure_leaves_product_untouched(db, make_product, no_cj_token, cj_api):
    product = make_product()

    result = await submit_for_sourcing(db, product)

    assert result.error == "Failed to authenticate with CJ API"
    assert cj_api.created == []
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
    assert product.sourcing_id is None


@pytest.mark.asyncio
async def test_transport_error_leaves_product_for_next_sweep(db, make_product, cj_token, cj_api):
    cj_api.create_response = CjApiError("CJ API timeout on product/sourcing/create")
    product = make_product()

    result = await submit_for_sourcing(db, product)

    assert result.success is False
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
    assert product.sourcing_error is None


def test_payload_truncates_name_and_description(make_product):
    product = make_product(name="N" * 250, description="D" * 900, price=19.999)

    payload = build_sourcing_payload(product)

    assert len(payload["productName"]) == 200
    assert len(payload["remark"]) == 500
    assert payload["price"] == "20.00"


@pytest.mark.asyncio
async def test_auto_submit_skips_imageless_and_counts(db, make_product, cj_token, cj_api):
    make_product(name="With image")
    make_product(name="No image", images=[])
    make_product(name="Already submitted", sourcing_id="SRC-OLD")
    make_product(name="Not scraped", source_url=None, sourcing_status=SourcingStatus.none)

    summary = await auto_submit_pending(db, delay_seconds=0)

    assert summary == {"submitted": 1, "failed": 0, "skipped": 1}
    assert [p["productName"] for p in cj_api.created] == ["With image"]


@pytest.mark.asyncio
async def test_auto_submit_without_token_submits_nothing(db, make_product, no_cj_token, cj_api):
    make_product()

    summary = await auto_submit_pending(db, delay_seconds=0)

    assert summary["submitted"] == 0
    assert cj_api.created == []


@pytest.mark.parametrize("data, expected", [
    ({"sourceStatus": "3", "cjProductId": "PID-1"}, SourcingStatus.approved),
    ([{"sourceStatus": "2", "cjProductId": ["PID-2"]}], SourcingStatus.approved),
    ({"sourceStatus": "4", "failReason": "Out of stock"}, SourcingStatus.rejected),
    ({"sourceStatus": "5"}, SourcingStatus.rejected),
    ({"sourceStatus": "1"}, None),
    (None, None),
])
def test_interpret_sourcing_status(data, expected):
    assert interpret_sourcing_status(data).status == expected


@pytest.mark.asyncio
async def test_check_sourcing_approves_and_rejects(db, make_product, cj_token, cj_api):
    approved = make_product(name="Approved", sourcing_id="SRC-A")
    rejected = make_product(name="Rejected", sourcing_id="SRC-R")
    waiting = make_product(name="Waiting", sourcing_id="SRC-W")
    cj_api.query_responses = {
        "SRC-A": ok([{
            "sourceStatus": "3",
            "cjProductId": ["PID-9"],
            "cjVariantId": "VID-9",
            "cjVariantSku": "CJSKU-9",
        }]),
        "SRC-R": ok({"sourceStatus": "4", "failReason": "Cannot source this item"}),
    }

    summary = await check_sourcing_status(db, delay_seconds=0)

    assert summary == {"checked": 3, "approved": 1, "rejected": 1, "errors": 0}
    db.refresh(approved)
    db.refresh(rejected)
    db.refresh(waiting)
    assert approved.sourcing_status == SourcingStatus.approved
    assert approved.external_product_id == "PID-9"
    assert approved.external_variant_id == "VID-9"
    assert approved.external_sku == "CJSKU-9"
    assert rejected.sourcing_status == SourcingStatus.rejected
    assert rejected.sourcing_error == "Cannot source this item"
    assert rejected.external_product_id is None
    assert waiting.sourcing_status == SourcingStatus.pending


@pytest.mark.asyncio
async def test_check_sourcing_counts_errors_and_continues(db, make_product, cj_token, cj_api):
    make_product(name="Broken", sourcing_id="SRC-X")
    ok_product = make_product(name="Fine", sourcing_id="SRC-OK")
    cj_api.query_responses = {
        "SRC-X": CjApiError("CJ API HTTP 502 on product/sourcing/query"),
        "SRC-OK": ok({"sourceStatus": "3", "cjProductId": "PID-OK"}),
    }

    summary = await check_sourcing_status(db, delay_seconds=0)

    assert summary["errors"] == 1
    assert summary["approved"] == 1
    db.refresh(ok_product)
    assert ok_product.sourcing_status == SourcingStatus.approved


@pytest.mark.asyncio
async def test_resubmit_clears_rejection_and_goes_back_to_pending(db, make_product, cj_token, cj_api):
    product = make_product(
        sourcing_status=SourcingStatus.rejected,
        sourcing_id="SRC-OLD",
        sourcing_error="Cannot source this item",
    )
    cj_api.create_response = ok({"cjSourcingId": "SRC-NEW"})

    result = await resubmit_sourcing(db, product.id)

    assert result.success is True
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
    assert product.sourcing_id == "SRC-NEW"
    assert product.sourcing_error is None


@pytest.mark.asyncio
async def test_resubmit_without_images_fails_fast(db, make_product, cj_token, cj_api):
    product = make_product(sourcing_status=SourcingStatus.rejected, images=[])

    result = await resubmit_sourcing(db, product.id)

    assert result.success is False
    assert "image" in result.error
    assert cj_api.created == []


@pytest.mark.asyncio
async def test_cancel_deletes_locally_even_when_cj_refuses(db, make_product, cj_token, cj_api):
    product = make_product(sourcing_id="SRC-DEL")
    product_id = product.id
    cj_api.cancel_response = fail("The sourcing request has been processed")

    result = await cancel_sourcing_and_delete(db, product_id)

    assert result.success is True
    assert result.cj_cancelled is True
    assert cj_api.cancelled == ["SRC-DEL"]
    assert db.get(Product, product_id) is None


@pytest.mark.asyncio
async def test_cancel_without_sourcing_id_skips_cj(db, make_product, cj_token, cj_api):
    product = make_product(sourcing_status=SourcingStatus.none, source_url=None)

    result = await cancel_sourcing_and_delete(db, product.id)

    assert result.success is True
    assert result.cj_cancelled is False
    assert cj_api.cancelled == []


def test_product_status_event_approves_and_rejects(db, make_product):
    first = make_product(name="A", external_product_id="PID-5", sourcing_status=SourcingStatus.pending)

    assert cj_sourcing.apply_product_status_event(db, "PID-5", 22) == 1
    db.refresh(first)
    assert first.sourcing_status == SourcingStatus.approved

    assert cj_sourcing.apply_product_status_event(db, "PID-5", 6, "Listing removed") == 1
    db.refresh(first)
    assert first.sourcing_status == SourcingStatus.rejected
    assert first.sourcing_error == "Listing removed"
    assert first.external_product_id is None


def test_product_status_event_ignores_other_codes(db, make_product):
    product = make_product(external_product_id="PID-7", sourcing_status=SourcingStatus.pending)

    assert cj_sourcing.apply_product_status_event(db, "PID-7", 10) == 0
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending


def test_storefront_hides_pending_and_rejected(make_product, db):
    make_product(name="Own product", source_url=None, sourcing_status=SourcingStatus.none)
    make_product(name="Approved", sourcing_status=SourcingStatus.approved)
    make_product(name="Pending", sourcing_status=SourcingStatus.pending)
    make_product(name="Rejected", sourcing_status=SourcingStatus.rejected)

    names = sorted(p.name for p in list_storefront_products(db))

    assert names == ["Approved", "Own product"]


@pytest.mark.asyncio
async def test_auto_submit_without_token_still_skips_imageless(db, make_product, no_cj_token, cj_api):
    make_product(name="With image")
    make_product(name="No image", images=[])

    summary = await auto_submit_pending(db, delay_seconds=0)

    assert summary == {"submitted": 0, "failed": 1, "skipped": 1}


@pytest.mark.asyncio
async def test_check_sourcing_without_token_reports_errors(db, make_product, no_cj_token, cj_api):
    product = make_product(sourcing_id="SRC-WAIT")

    summary = await check_sourcing_status(db, delay_seconds=0)

    assert summary == {"checked": 0, "approved": 0, "rejected": 0, "errors": 1}
    assert cj_api.queried == []
    db.refresh(product)
    assert product.sourcing_status == SourcingStatus.pending
