from pydantic import BaseModel, Field
from typing import Optional, List


class ShippingAddress(BaseModel):
    line1: str
    line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postalCode: str = ""
    country: str


class CheckoutLineItem(BaseModel):
    productId: str
    variantId: Optional[str] = None
    variantName: Optional[str] = None
    name: str
    price: float
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    # Filled by the storefront cart when it already knows the CJ ids.
    cjVariantId: Optional[str] = None
    cjSku: Optional[str] = None


class CheckoutCompletedEvent(BaseModel):
    """Payment-completion event forwarded by the checkout provider integration."""

    sessionId: str = Field(..., min_length=1)
    paymentIntentId: Optional[str] = None
    customerEmail: str
    customerName: Optional[str] = None
    customerPhone: Optional[str] = None
    items: List[CheckoutLineItem]
    subtotal: float = 0.0
    shipping: Optional[float] = None
    tax: Optional[float] = None
    total: float = 0.0
    currency: str = "usd"
    shippingAddress: Optional[ShippingAddress] = None


class CheckoutCompletedResponse(BaseModel):
    received: bool
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    created: bool = False
    fulfillment_status: Optional[str] = None
    fulfillment_error: Optional[str] = None
