from pydantic import BaseModel, Field
from typing import Optional, List


class VariantIn(BaseModel):
    name: str
    priceAdjustment: float = 0.0
    inStock: bool = True


class ProductImportRequest(BaseModel):
    """A product scraped from a marketplace page."""

    name: str = Field(..., min_length=1)
    price: float = 0.0
    description: str = ""
    images: List[str] = []
    category: Optional[str] = None
    collection: Optional[str] = None
    isNew: bool = False
    sourceUrl: Optional[str] = None
    variants: List[VariantIn] = []


class VariantOut(BaseModel):
    id: str
    name: str
    priceAdjustment: float
    inStock: bool
    cjVariantId: Optional[str] = None
    cjSku: Optional[str] = None


class ProductOut(BaseModel):
    id: str
    name: str
    price: float
    description: str
    images: List[str]
    category: Optional[str] = None
    collection: Optional[str] = None
    isNew: bool
    inStock: bool
    sourcingStatus: str
    variants: List[VariantOut] = []
