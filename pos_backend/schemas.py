from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ScanRequest(BaseModel):
    sku: str
    store_id: Optional[int] = None

    @field_validator('sku')
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or '').strip()
        if not v:
            raise ValueError('sku is required')
        return v


class InvoiceLineIn(BaseModel):
    product_id: int
    qty: int


class InvoiceCreate(BaseModel):
    store_id: Optional[int] = None
    lines: list[InvoiceLineIn] = Field(default_factory=list)
    client_invoice_ref: Optional[str] = None


class InvoiceVoid(BaseModel):
    reason: Optional[str] = None


# Offline lines are validated one invoice at a time by the reconciler, so a
# malformed entry fails alone instead of rejecting the batch.
class OfflineLineIn(BaseModel):
    qty: Optional[int] = None
    stock_quantity: Optional[int] = None
    sku: Optional[str] = None
    product_name: Optional[str] = None
    category_name: Optional[str] = None
    brand_name: Optional[str] = None
    manufacturer_name: Optional[str] = None
    unit_price: Optional[Decimal] = None


class OfflineInvoiceIn(BaseModel):
    local_id: str
    lines: list[OfflineLineIn] = Field(default_factory=list)
    client_invoice_ref: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None


class SyncBatch(BaseModel):
    store_id: Optional[int] = None
    invoices: list[OfflineInvoiceIn] = Field(default_factory=list)


class StockAdjust(BaseModel):
    store_id: int
    product_id: int
    quantity: int
    reference: Optional[str] = None

    @field_validator('quantity')
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError('quantity must not be zero')
        return v
