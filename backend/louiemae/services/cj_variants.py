"""Mapping between customer-facing variants and CJ variants.

Admins link each storefront variant (e.g. a size) to the CJ variant that ships
for it. The link is read when a paid order is recorded, so that the
fulfillment order targets the right physical SKU. No CJ calls happen here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from louiemae.models_sqlalchemy.models import CjProductVariant, Product, ProductVariant, SourcingStatus
from louiemae.utils.logger import logger


VARIANT_STATUS_ACTIVE = 22


class VariantLinkError(ValueError):
    """Raised for links that cannot be made (unknown ids, duplicate CJ variant)."""


@dataclass
class ExternalVariantEvent:
    """Payload of a CJ VARIANT webhook, normalised."""

    external_product_id: str
    external_variant_id: str
    sku: Optional[str] = None
    name: Optional[str] = None
    value1: Optional[str] = None
    value2: Optional[str] = None
    status: Any = None
    price: Any = None
    image: Optional[str] = None

    @property
    def friendly_name(self) -> str:
        if self.name:
            return self.name
        if self.value1 and self.value2:
            return f"{self.value1} - {self.value2}"
        return self.value1 or self.value2 or f"Variant {self.external_variant_id}"


def _get_product_and_variant(db: Session, product_id: str, variant_id: str) -> Tuple[Product, ProductVariant]:
    product = db.get(Product, product_id)
    if product is None:
        raise VariantLinkError(f"Product {product_id} not found")

    variant = next((v for v in product.variants if v.id == variant_id), None)
    if variant is None:
        raise VariantLinkError(f"Variant {variant_id} does not belong to product {product_id}")
    return product, variant


def link_variant(
    db: Session,
    product_id: str,
    variant_id: str,
    external_variant_id: str,
    external_sku: Optional[str] = None,
    *,
    force: bool = False,
) -> ProductVariant:
    """Point a customer variant at a CJ variant.

    A CJ variant may back only one customer variant per product. Linking one
    that is already taken raises unless ``force`` is set, in which case the
    link moves from the other variant to this one.
    """

    external_variant_id = (external_variant_id or "").strip()
    if not external_variant_id:
        raise VariantLinkError("external_variant_id is required")

    product, variant = _get_product_and_variant(db, product_id, variant_id)

    holders = [
        v for v in product.variants
        if v.id != variant.id and v.external_variant_id == external_variant_id
    ]
    if holders and not force:
        raise VariantLinkError(
            f"CJ variant {external_variant_id} is already linked to variant "
            f"{holders[0].name!r} of this product"
        )
    for other in holders:
        logger.info(
            "[cj_variants] Moving CJ variant %s from variant_id=%s to variant_id=%s",
            external_variant_id, other.id, variant.id,
        )
        other.external_variant_id = None
        other.external_sku = None

    if external_sku is None:
        known = next(
            (ev for ev in product.external_variants if ev.external_variant_id == external_variant_id),
            None,
        )
        external_sku = known.sku if known else None

    variant.external_variant_id = external_variant_id
    variant.external_sku = external_sku or None
    db.commit()
    logger.info(
        "[cj_variants] Linked product_id=%s variant_id=%s -> vid=%s sku=%s",
        product_id, variant_id, external_variant_id, variant.external_sku,
    )
    return variant


def unlink_variant(db: Session, product_id: str, variant_id: str) -> ProductVariant:
    _, variant = _get_product_and_variant(db, product_id, variant_id)
    variant.external_variant_id = None
    variant.external_sku = None
    db.commit()
    logger.info("[cj_variants] Unlinked product_id=%s variant_id=%s", product_id, variant_id)
    return variant


def list_external_variants(db: Session, product_id: str) -> List[CjProductVariant]:
    product = db.get(Product, product_id)
    if product is None:
        raise VariantLinkError(f"Product {product_id} not found")
    return sorted(product.external_variants, key=lambda ev: (ev.name or "", ev.external_variant_id))


def upsert_external_variant(db: Session, event: ExternalVariantEvent) -> int:
    """Record a CJ variant against every product with its CJ product id.

    Inactive variants are ignored. Returns the number of products updated.
    """

    try:
        status_code = int(event.status)
    except (TypeError, ValueError):
        status_code = None
    if status_code != VARIANT_STATUS_ACTIVE:
        logger.info(
            "[cj_variants] CJ variant %s has status %s, skipping (not active)",
            event.external_variant_id, event.status,
        )
        return 0

    products = db.query(Product).filter(Product.external_product_id == event.external_product_id).all()
    if not products:
        logger.info(
            "[cj_variants] No product for CJ pid=%s yet; variant %s not recorded",
            event.external_product_id, event.external_variant_id,
        )
        return 0

    try:
        price = float(event.price) if event.price not in (None, "") else None
    except (TypeError, ValueError):
        price = None

    for product in products:
        existing = next(
            (ev for ev in product.external_variants if ev.external_variant_id == event.external_variant_id),
            None,
        )
        if existing is None:
            existing = CjProductVariant(external_variant_id=event.external_variant_id)
            product.external_variants.append(existing)
        existing.sku = event.sku or existing.sku
        existing.name = event.friendly_name
        existing.price = price if price is not None else existing.price
        existing.image = event.image or existing.image

    db.commit()
    return len(products)


def resolve_line_identifiers(
    db: Session,
    product_id: Optional[str],
    variant_id: Optional[str],
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(external_variant_id, external_sku)`` for an order line.

    The linked customer variant wins; otherwise an approved product's own
    CJ variant is used. Unknown products resolve to ``(None, None)``.
    """

    if not product_id:
        return None, None
    product = db.get(Product, product_id)
    if product is None:
        return None, None

    if variant_id:
        variant = next((v for v in product.variants if v.id == variant_id), None)
        if variant is not None and (variant.external_variant_id or variant.external_sku):
            return variant.external_variant_id, variant.external_sku

    if product.sourcing_status == SourcingStatus.approved and (product.external_variant_id or product.external_sku):
        return product.external_variant_id, product.external_sku

    return None, None
