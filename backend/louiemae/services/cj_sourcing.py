"""CJ product sourcing workflow.

Products scraped from third-party marketplaces are submitted to CJ, which
decides whether to add them to its fulfillable catalog. Per product:

    none/pending --submit--> pending(sourcing_id) --check--> approved | rejected
    rejected --resubmit--> pending

Pending and rejected products are hidden from the storefront. Sweeps process
one product at a time with a small pause between CJ calls; one product's
failure never aborts a sweep.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy.models import Product, SourcingStatus
from louiemae.services.cj_api_client import cj_client, extract_id, first_scalar, normalize_record
from louiemae.services.cj_token_provider import get_access_token
from louiemae.utils.logger import logger


AUTH_FAILED_MESSAGE = "Failed to authenticate with CJ API"

PRODUCT_NAME_MAX_LENGTH = 200
REMARK_MAX_LENGTH = 500

# product/sourcing/query sourceStatus values
SOURCING_STATUS_SUCCESS = "3"
SOURCING_STATUS_FAILED = {"4", "5"}

# PRODUCT webhook productStatus values
PRODUCT_STATUS_ACTIVE = 22
PRODUCT_STATUS_REJECTED = {5, 6}


@dataclass
class SourcingResult:
    success: bool
    sourcing_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CancelResult:
    success: bool
    cj_cancelled: bool = False
    error: Optional[str] = None


@dataclass
class SourcingDecision:
    """What a sourcing query response means for the local product."""

    status: Optional[SourcingStatus]
    external_product_id: Optional[str] = None
    external_variant_id: Optional[str] = None
    external_sku: Optional[str] = None
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sweep_delay(delay_seconds: Optional[float]) -> float:
    return settings.CJ_SWEEP_DELAY_SECONDS if delay_seconds is None else delay_seconds


def validate_sourcing_input(product: Product) -> Optional[str]:
    """Return a message naming the missing precondition, or None."""

    if not (product.source_url or "").strip():
        return "Product has no source URL to submit for sourcing"
    if not (product.name or "").strip():
        return "Product has no name to submit for sourcing"
    if not _has_images(product):
        return "Product has no images; CJ requires at least one image for sourcing"
    return None


def build_sourcing_payload(product: Product) -> Dict[str, Any]:
    images = [img for img in (product.images or []) if img]
    payload: Dict[str, Any] = {
        "productUrl": product.source_url.strip(),
        "productName": product.name.strip()[:PRODUCT_NAME_MAX_LENGTH],
        "productImage": images[0],
        "thirdProductId": product.id,
    }
    description = (product.description or "").strip()
    if description:
        payload["remark"] = description[:REMARK_MAX_LENGTH]
    if product.price:
        payload["price"] = f"{float(product.price):.2f}"
    return payload


async def submit_for_sourcing(
    db: Session,
    product: Product,
    *,
    token: Optional[str] = None,
) -> SourcingResult:
    """Submit one product to CJ sourcing.

    Validation failures return before any network call and leave the product
    untouched. A provider rejection marks the product ``rejected`` with CJ's
    message; transport failures leave it as-is so the next sweep retries.
    """

    problem = validate_sourcing_input(product)
    if problem:
        logger.warning("[cj_sourcing] Not submitting product_id=%s: %s", product.id, problem)
        return SourcingResult(success=False, error=problem)

    if token is None:
        token = await get_access_token(db, triggered_by="sourcing_submit")
    if not token:
        return SourcingResult(success=False, error=AUTH_FAILED_MESSAGE)

    payload = build_sourcing_payload(product)
    try:
        resp = await cj_client.create_sourcing(token, payload)
    except Exception as exc:
        logger.error("[cj_sourcing] Submit failed for product_id=%s: %s", product.id, exc)
        return SourcingResult(success=False, error=str(exc))

    sourcing_id = extract_id(resp.data, "cjSourcingId", "sourcingId", "sourceId", "id") if resp.result else None
    if not sourcing_id:
        error = resp.error_message if not resp.result else "CJ did not return a sourcing id"
        product.sourcing_status = SourcingStatus.rejected
        product.sourcing_error = error
        db.commit()
        logger.warning("[cj_sourcing] CJ rejected product_id=%s: %s", product.id, error)
        return SourcingResult(success=False, error=error)

    product.sourcing_id = sourcing_id
    product.sourcing_status = SourcingStatus.pending
    product.sourcing_error = None
    product.submitted_at = _now()
    db.commit()
    logger.info("[cj_sourcing] Submitted product_id=%s sourcing_id=%s", product.id, sourcing_id)
    return SourcingResult(success=True, sourcing_id=sourcing_id)


def _products_awaiting_submission(db: Session) -> List[Product]:
    return (
        db.query(Product)
        .filter(Product.sourcing_status.in_([SourcingStatus.pending, SourcingStatus.none]))
        .filter(Product.sourcing_id.is_(None))
        .filter(Product.source_url.isnot(None))
        .filter(Product.source_url != "")
        .order_by(Product.created_at.asc())
        .all()
    )


def _has_images(product: Product) -> bool:
    return any(img for img in (product.images or []))


async def auto_submit_pending(db: Session, *, delay_seconds: Optional[float] = None) -> Dict[str, int]:
    """Submit every imported product that has not reached CJ yet."""

    candidates = _products_awaiting_submission(db)
    summary = {"submitted": 0, "failed": 0, "skipped": 0}
    if not candidates:
        return summary

    token = await get_access_token(db, triggered_by="sourcing_auto_submit")
    if not token:
        logger.error("[cj_sourcing] Auto-submit skipped: %s", AUTH_FAILED_MESSAGE)
        imageless = sum(1 for p in candidates if not _has_images(p))
        summary["skipped"] = imageless
        summary["failed"] = len(candidates) - imageless
        return summary

    delay = _sweep_delay(delay_seconds)
    for index, product in enumerate(candidates):
        if not _has_images(product):
            summary["skipped"] += 1
            logger.info("[cj_sourcing] Skipping product_id=%s without images", product.id)
            continue

        if index and delay:
            await asyncio.sleep(delay)

        try:
            result = await submit_for_sourcing(db, product, token=token)
        except Exception as exc:
            db.rollback()
            logger.error("[cj_sourcing] Auto-submit error product_id=%s: %s", product.id, exc, exc_info=True)
            summary["failed"] += 1
            continue

        if result.success:
            summary["submitted"] += 1
        else:
            summary["failed"] += 1

    logger.info("[cj_sourcing] Auto-submit complete: %s", summary)
    return summary


def interpret_sourcing_status(data: Any) -> SourcingDecision:
    """Map a product/sourcing/query ``data`` payload to a local decision."""

    record = normalize_record(data)
    status = first_scalar(record.get("sourceStatus") or record.get("status"))
    product_id = extract_id(record, "cjProductId", "productId")

    if status == SOURCING_STATUS_SUCCESS or product_id:
        return SourcingDecision(
            status=SourcingStatus.approved,
            external_product_id=product_id,
            external_variant_id=extract_id(record, "variantId", "cjVariantId", "vid"),
            external_sku=extract_id(record, "cjVariantSku", "variantSku", "sku"),
        )

    if status in SOURCING_STATUS_FAILED:
        reason = (
            first_scalar(record.get("failReason"))
            or first_scalar(record.get("sourceStatusStr"))
            or "Sourcing request was rejected"
        )
        return SourcingDecision(status=SourcingStatus.rejected, error=reason)

    return SourcingDecision(status=None)


def _clear_external_ids(product: Product) -> None:
    # A CJ product id is only kept while the product is approved.
    product.external_product_id = None
    product.external_variant_id = None
    product.external_sku = None
    product.approved_at = None


def apply_sourcing_decision(db: Session, product: Product, decision: SourcingDecision) -> bool:
    """Persist an approval/rejection. Returns False when nothing changed."""

    if decision.status == SourcingStatus.approved:
        product.sourcing_status = SourcingStatus.approved
        if decision.external_product_id:
            product.external_product_id = decision.external_product_id
        if decision.external_variant_id:
            product.external_variant_id = decision.external_variant_id
        if decision.external_sku:
            product.external_sku = decision.external_sku
        product.sourcing_error = None
        product.approved_at = product.approved_at or _now()
    elif decision.status == SourcingStatus.rejected:
        product.sourcing_status = SourcingStatus.rejected
        product.sourcing_error = decision.error
        _clear_external_ids(product)
    else:
        return False

    db.commit()
    return True


async def check_sourcing_status(db: Session, *, delay_seconds: Optional[float] = None) -> Dict[str, int]:
    """Reconcile every submitted, still-pending product with CJ."""

    pending = (
        db.query(Product)
        .filter(Product.sourcing_status == SourcingStatus.pending)
        .filter(Product.sourcing_id.isnot(None))
        .order_by(Product.submitted_at.asc())
        .all()
    )
    summary = {"checked": 0, "approved": 0, "rejected": 0, "errors": 0}
    if not pending:
        return summary

    token = await get_access_token(db, triggered_by="sourcing_check")
    if not token:
        logger.error("[cj_sourcing] Cannot check sourcing status: %s", AUTH_FAILED_MESSAGE)
        summary["errors"] = len(pending)
        return summary

    delay = _sweep_delay(delay_seconds)
    for index, product in enumerate(pending):
        if index and delay:
            await asyncio.sleep(delay)

        summary["checked"] += 1
        try:
            resp = await cj_client.query_sourcing(token, [product.sourcing_id])
            if not resp.result:
                logger.warning(
                    "[cj_sourcing] Query failed product_id=%s sourcing_id=%s: %s",
                    product.id, product.sourcing_id, resp.error_message,
                )
                summary["errors"] += 1
                continue

            decision = interpret_sourcing_status(resp.data)
            if apply_sourcing_decision(db, product, decision):
                summary[decision.status.value] += 1
                logger.info(
                    "[cj_sourcing] product_id=%s is now %s (external_product_id=%s)",
                    product.id, decision.status.value, product.external_product_id,
                )
        except Exception as exc:
            db.rollback()
            summary["errors"] += 1
            logger.error(
                "[cj_sourcing] Error checking product_id=%s sourcing_id=%s: %s",
                product.id, product.sourcing_id, exc,
            )

    logger.info("[cj_sourcing] Sourcing check complete: %s", summary)
    return summary


async def resubmit_sourcing(db: Session, product_id: str) -> SourcingResult:
    """Clear previous sourcing state and submit the product again."""

    product = db.get(Product, product_id)
    if product is None:
        return SourcingResult(success=False, error=f"Product {product_id} not found")

    problem = validate_sourcing_input(product)
    if problem:
        return SourcingResult(success=False, error=problem)

    product.sourcing_status = SourcingStatus.pending
    product.sourcing_id = None
    product.sourcing_error = None
    product.submitted_at = None
    _clear_external_ids(product)
    db.commit()

    return await submit_for_sourcing(db, product)


def _is_effectively_cancelled(message: Optional[str]) -> bool:
    text = (message or "").lower()
    return "processed" in text or "approved" in text


async def cancel_sourcing_and_delete(db: Session, product_id: str) -> CancelResult:
    """Best-effort CJ cancellation followed by local deletion."""

    product = db.get(Product, product_id)
    if product is None:
        return CancelResult(success=False, error=f"Product {product_id} not found")

    cj_cancelled = False
    sourcing_id = product.sourcing_id
    if sourcing_id:
        token = await get_access_token(db, triggered_by="sourcing_cancel")
        if token:
            try:
                resp = await cj_client.cancel_sourcing(token, sourcing_id)
                if resp.result:
                    cj_cancelled = True
                else:
                    cj_cancelled = _is_effectively_cancelled(resp.message)
                    logger.warning(
                        "[cj_sourcing] CJ cancel not confirmed sourcing_id=%s: %s",
                        sourcing_id, resp.error_message,
                    )
            except Exception as exc:
                logger.error("[cj_sourcing] CJ cancel error sourcing_id=%s: %s", sourcing_id, exc)
        else:
            logger.warning("[cj_sourcing] Could not cancel on CJ (auth failed), deleting locally")

    try:
        db.delete(product)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error("[cj_sourcing] Failed to delete product_id=%s: %s", product_id, exc)
        return CancelResult(success=False, cj_cancelled=cj_cancelled, error=str(exc))

    logger.info("[cj_sourcing] Deleted product_id=%s cj_cancelled=%s", product_id, cj_cancelled)
    return CancelResult(success=True, cj_cancelled=cj_cancelled)


def apply_product_status_event(
    db: Session,
    external_product_id: str,
    product_status: Any,
    reason: Optional[str] = None,
) -> int:
    """Apply a PRODUCT webhook to every local product with that CJ id."""

    try:
        status_code = int(product_status)
    except (TypeError, ValueError):
        status_code = None

    if status_code == PRODUCT_STATUS_ACTIVE:
        decision = SourcingDecision(status=SourcingStatus.approved, external_product_id=external_product_id)
    elif status_code in PRODUCT_STATUS_REJECTED:
        decision = SourcingDecision(status=SourcingStatus.rejected, error=reason or "Product rejected by CJ")
    else:
        return 0

    products = db.query(Product).filter(Product.external_product_id == external_product_id).all()
    updated = 0
    for product in products:
        if apply_sourcing_decision(db, product, decision):
            updated += 1
    return updated


def list_storefront_products(db: Session) -> List[Product]:
    """Products customers may see: never sourced, or approved by CJ."""

    return (
        db.query(Product)
        .filter(or_(
            Product.sourcing_status == SourcingStatus.none,
            Product.sourcing_status == SourcingStatus.approved,
        ))
        .order_by(Product.created_at.desc())
        .all()
    )
