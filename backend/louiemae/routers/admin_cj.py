from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy import get_db
from louiemae.models_sqlalchemy.models import BackgroundWorker, FulfillmentStatus, Order
from louiemae.services.auth import internal_api_key_required
from louiemae.services.cj_api_client import cj_client
from louiemae.services.cj_orders import create_fulfillment_order, list_orders_by_fulfillment, reset_fulfillment
from louiemae.services.cj_sourcing import AUTH_FAILED_MESSAGE, cancel_sourcing_and_delete, resubmit_sourcing
from louiemae.services.cj_token_provider import get_access_token, get_valid_access_token
from louiemae.services.cj_tracking import sync_all_tracking
from louiemae.services.cj_variants import VariantLinkError, link_variant, list_external_variants, unlink_variant
from louiemae.utils.logger import cj_logger, logger
from louiemae.workers.cj_sourcing_worker import run_sourcing_cycle


router = APIRouter(
    prefix="/api/admin/cj",
    tags=["admin-cj"],
    dependencies=[Depends(internal_api_key_required)],
)


class ConfigureWebhooksRequest(BaseModel):
    callback_url: Optional[str] = None


class VariantLinkRequest(BaseModel):
    cj_variant_id: str
    cj_sku: Optional[str] = None
    force: bool = False


class OrderDto(BaseModel):
    id: str
    order_number: str
    customer_email: str
    customer_name: Optional[str]
    total: float
    status: str
    fulfillment_status: Optional[str]
    fulfillment_error: Optional[str]
    external_order_id: Optional[str]
    tracking_number: Optional[str]
    created_at: Optional[str]


class WorkerDto(BaseModel):
    worker_name: str
    interval_seconds: Optional[int]
    last_started_at: Optional[str]
    last_finished_at: Optional[str]
    last_status: Optional[str]
    last_error_message: Optional[str]
    last_summary: Optional[Dict[str, Any]]
    runs_ok_in_row: int
    runs_error_in_row: int
    stale: bool


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _serialize_order(order: Order) -> Dict[str, Any]:
    return OrderDto(
        id=order.id,
        order_number=order.order_number,
        customer_email=order.customer_email,
        customer_name=order.customer_name,
        total=order.total,
        status=order.status.value,
        fulfillment_status=order.fulfillment_status.value if order.fulfillment_status else None,
        fulfillment_error=order.fulfillment_error,
        external_order_id=order.external_order_id,
        tracking_number=order.tracking_number,
        created_at=_iso(order.created_at),
    ).model_dump()


def _serialize_worker(worker: BackgroundWorker, now: datetime) -> WorkerDto:
    last_run = worker.last_finished_at or worker.last_started_at
    stale = True
    if last_run is not None and worker.interval_seconds:
        if last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=timezone.utc)
        stale = (now - last_run).total_seconds() > worker.interval_seconds * 2
    return WorkerDto(
        worker_name=worker.worker_name,
        interval_seconds=worker.interval_seconds,
        last_started_at=_iso(worker.last_started_at),
        last_finished_at=_iso(worker.last_finished_at),
        last_status=worker.last_status,
        last_error_message=worker.last_error_message,
        last_summary=worker.last_summary,
        runs_ok_in_row=worker.runs_ok_in_row or 0,
        runs_error_in_row=worker.runs_error_in_row or 0,
        stale=stale,
    )


def _error(action: str, exc: Exception) -> Dict[str, Any]:
    logger.error("[admin_cj] %s failed: %s", action, exc, exc_info=True)
    return {"success": False, "message": str(exc) or f"{action} failed"}


@router.post("/test-connection")
async def test_connection(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        result = await get_valid_access_token(db, triggered_by="admin_test")
    except Exception as exc:
        return _error("test-connection", exc)

    if result.success:
        message = "Connected to CJ Dropshipping"
    else:
        message = result.error_message or "Failed to authenticate with CJ API"
    return {"success": result.success, "message": message, "token": result.to_dict()}


@router.post("/configure-webhooks")
async def configure_webhooks(
    payload: Optional[ConfigureWebhooksRequest] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    callback_url = (payload.callback_url if payload else None) or settings.CJ_WEBHOOK_CALLBACK_URL
    if not callback_url:
        return {"success": False, "message": "CJ_WEBHOOK_CALLBACK_URL is not configured"}

    try:
        token = await get_access_token(db, triggered_by="admin_webhooks")
        if not token:
            return {"success": False, "message": "Failed to authenticate with CJ API"}
        resp = await cj_client.set_webhooks(token, callback_url)
    except Exception as exc:
        return _error("configure-webhooks", exc)

    if not resp.result:
        return {"success": False, "message": resp.error_message}
    return {"success": True, "message": f"Webhooks registered for {callback_url}", "callback_url": callback_url}


@router.post("/sync-tracking")
async def sync_tracking(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        summary = await sync_all_tracking(db)
    except Exception as exc:
        return _error("sync-tracking", exc)
    return {
        "success": True,
        "message": f"Synced {summary['synced']} orders, {summary['errors']} errors",
        **summary,
    }


@router.post("/check-sourcing")
async def check_sourcing(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        summary = await run_sourcing_cycle(db)
    except Exception as exc:
        return _error("check-sourcing", exc)
    checked = summary["status_check"]
    submitted = summary["auto_submit"]
    # errors with nothing checked means the sweep never got a token
    if checked["errors"] and not checked["checked"]:
        return {
            "success": False,
            "message": f"{AUTH_FAILED_MESSAGE}; {checked['errors']} pending products not checked",
            **summary,
        }
    return {
        "success": True,
        "message": (
            f"Submitted {submitted['submitted']} products; checked {checked['checked']}, "
            f"approved {checked['approved']}, rejected {checked['rejected']}, errors {checked['errors']}"
        ),
        **summary,
    }


@router.get("/orders/failed")
async def failed_orders(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        orders = list_orders_by_fulfillment(db, FulfillmentStatus.failed)
    except Exception as exc:
        return _error("orders/failed", exc)
    return {"success": True, "message": f"{len(orders)} failed orders", "orders": [_serialize_order(o) for o in orders]}


@router.get("/orders/pending")
async def pending_orders(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        orders = list_orders_by_fulfillment(db, FulfillmentStatus.pending)
    except Exception as exc:
        return _error("orders/pending", exc)
    return {"success": True, "message": f"{len(orders)} pending orders", "orders": [_serialize_order(o) for o in orders]}


@router.post("/orders/{order_id}/retry")
async def retry_order(order_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Reset a failed order to ``pending``. Does not contact CJ."""

    try:
        order = reset_fulfillment(db, order_id)
    except (LookupError, ValueError) as exc:
        return {"success": False, "message": str(exc)}
    except Exception as exc:
        return _error("orders/retry", exc)
    return {"success": True, "message": "Order reset to pending", "order": _serialize_order(order)}


@router.post("/orders/{order_id}/submit")
async def submit_order(order_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Send a pending order to CJ now."""

    try:
        order = db.get(Order, order_id)
        if order is None:
            return {"success": False, "message": f"Order {order_id} not found"}
        result = await create_fulfillment_order(db, order)
    except Exception as exc:
        return _error("orders/submit", exc)

    if not result.success:
        return {"success": False, "message": result.error, "order": _serialize_order(order)}
    return {
        "success": True,
        "message": f"CJ order created: {result.external_order_id}",
        "external_order_id": result.external_order_id,
        "order": _serialize_order(order),
    }


@router.post("/products/{product_id}/resubmit")
async def resubmit_product(product_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        result = await resubmit_sourcing(db, product_id)
    except Exception as exc:
        return _error("products/resubmit", exc)
    if not result.success:
        return {"success": False, "message": result.error}
    return {"success": True, "message": "Product resubmitted for sourcing", "sourcing_id": result.sourcing_id}


@router.delete("/products/{product_id}")
async def cancel_and_delete_product(product_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        result = await cancel_sourcing_and_delete(db, product_id)
    except Exception as exc:
        return _error("products/delete", exc)
    if not result.success:
        return {"success": False, "message": result.error, "cj_cancelled": result.cj_cancelled}
    message = "Product deleted" + (" and CJ sourcing cancelled" if result.cj_cancelled else "")
    return {"success": True, "message": message, "cj_cancelled": result.cj_cancelled}


@router.post("/products/{product_id}/variants/{variant_id}/link")
async def link_product_variant(
    product_id: str,
    variant_id: str,
    payload: VariantLinkRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        variant = link_variant(
            db, product_id, variant_id, payload.cj_variant_id, payload.cj_sku, force=payload.force,
        )
    except VariantLinkError as exc:
        return {"success": False, "message": str(exc)}
    except Exception as exc:
        return _error("variants/link", exc)
    return {
        "success": True,
        "message": f"Variant {variant.name} linked to CJ variant {variant.external_variant_id}",
        "cj_variant_id": variant.external_variant_id,
        "cj_sku": variant.external_sku,
    }


@router.delete("/products/{product_id}/variants/{variant_id}/link")
async def unlink_product_variant(product_id: str, variant_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        variant = unlink_variant(db, product_id, variant_id)
    except VariantLinkError as exc:
        return {"success": False, "message": str(exc)}
    except Exception as exc:
        return _error("variants/unlink", exc)
    return {"success": True, "message": f"Variant {variant.name} unlinked"}


@router.get("/products/{product_id}/cj-variants")
async def product_cj_variants(product_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        variants = list_external_variants(db, product_id)
    except VariantLinkError as exc:
        return {"success": False, "message": str(exc)}
    except Exception as exc:
        return _error("cj-variants", exc)
    return {
        "success": True,
        "message": f"{len(variants)} CJ variants",
        "variants": [
            {"vid": v.external_variant_id, "sku": v.sku, "name": v.name, "price": v.price, "image": v.image}
            for v in variants
        ],
    }


@router.get("/logs")
async def get_cj_logs(limit: Optional[int] = Query(100, ge=1, le=1000)) -> Dict[str, Any]:
    logs = cj_logger.get_logs(limit=limit)
    return {"success": True, "message": f"{len(logs)} log entries", "logs": logs}


@router.delete("/logs")
async def clear_cj_logs() -> Dict[str, Any]:
    cj_logger.clear_logs()
    return {"success": True, "message": "CJ connection logs cleared"}


@router.get("/workers")
async def list_workers(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        rows: List[BackgroundWorker] = db.query(BackgroundWorker).order_by(BackgroundWorker.worker_name).all()
    except Exception as exc:
        return _error("workers", exc)
    now = datetime.now(timezone.utc)
    return {
        "success": True,
        "message": f"{len(rows)} workers",
        "workers": [_serialize_worker(w, now).model_dump() for w in rows],
    }
