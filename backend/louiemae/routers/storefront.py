from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from louiemae.models.checkout import CheckoutCompletedEvent, CheckoutCompletedResponse
from louiemae.models.product import ProductImportRequest, ProductOut, VariantOut
from louiemae.models_sqlalchemy import get_db
from louiemae.models_sqlalchemy.models import Product, ProductVariant, SourcingStatus
from louiemae.services.auth import internal_api_key_required
from louiemae.services.checkout import record_paid_order
from louiemae.services.cj_sourcing import list_storefront_products
from louiemae.utils.logger import logger


router = APIRouter(tags=["storefront"])


def _serialize_product(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        price=product.price,
        description=product.description or "",
        images=list(product.images or []),
        category=product.category,
        collection=product.collection,
        isNew=bool(product.is_new),
        inStock=bool(product.in_stock),
        sourcingStatus=product.sourcing_status.value,
        variants=[
            VariantOut(
                id=v.id,
                name=v.name,
                priceAdjustment=v.price_adjustment or 0.0,
                inStock=bool(v.in_stock),
                cjVariantId=v.external_variant_id,
                cjSku=v.external_sku,
            )
            for v in product.variants
        ],
    )


@router.get("/api/products", response_model=List[ProductOut])
async def list_products(db: Session = Depends(get_db)) -> List[ProductOut]:
    """Products visible to customers (not waiting on or rejected by CJ)."""
    return [_serialize_product(p) for p in list_storefront_products(db)]


@router.post(
    "/api/admin/products/import",
    response_model=ProductOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(internal_api_key_required)],
)
async def import_product(payload: ProductImportRequest, db: Session = Depends(get_db)) -> ProductOut:
    """Store a scraped product. One with a source URL is queued for CJ sourcing."""

    source_url = (payload.sourceUrl or "").strip() or None
    product = Product(
        name=payload.name,
        price=payload.price,
        description=payload.description,
        images=[img for img in payload.images if img],
        category=payload.category,
        collection=payload.collection,
        is_new=payload.isNew,
        source_url=source_url,
        sourcing_status=SourcingStatus.pending if source_url else SourcingStatus.none,
    )
    for position, variant in enumerate(payload.variants):
        product.variants.append(
            ProductVariant(
                name=variant.name,
                price_adjustment=variant.priceAdjustment,
                in_stock=variant.inStock,
                position=position,
            )
        )
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info(
        "[storefront] Imported product_id=%s sourcing_status=%s", product.id, product.sourcing_status.value,
    )
    return _serialize_product(product)


@router.post(
    "/api/checkout/completed",
    response_model=CheckoutCompletedResponse,
    dependencies=[Depends(internal_api_key_required)],
)
async def checkout_completed(
    event: CheckoutCompletedEvent,
    db: Session = Depends(get_db),
) -> CheckoutCompletedResponse:
    """Payment-completion intake. Safe to deliver more than once."""

    order, created = await record_paid_order(db, event)
    return CheckoutCompletedResponse(
        received=True,
        order_id=order.id,
        order_number=order.order_number,
        created=created,
        fulfillment_status=order.fulfillment_status.value if order.fulfillment_status else None,
        fulfillment_error=order.fulfillment_error,
    )
