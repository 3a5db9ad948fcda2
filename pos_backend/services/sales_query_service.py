from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pos_backend.errors import NotFoundError
from pos_backend.models import Invoice, InvoiceItem, InvoiceStatus, Product, Store
from pos_backend.money import Money
from pos_backend.services.inventory_ledger import InventoryLedger


def _product_row(product: Product) -> dict:
    return {
        'id': product.id,
        'sku': product.sku,
        'name': product.name,
        'unit_price': str(product.unit_price),
        'unit_size_value': product.unit_size_value,
        'unit_size_unit': product.unit_size_unit.value if product.unit_size_unit else None,
        'category': product.category.name,
        'brand': product.brand.name,
        'manufacturer': product.manufacturer.name,
    }


def scan_product(db: Session, *, store_id: int, sku: str) -> dict:
    sku = sku.strip()
    product = db.execute(
        select(Product).where(Product.sku == sku, Product.store_id == store_id)
    ).scalar_one_or_none()
    if not product:
        raise NotFoundError(f'Product with SKU {sku} not found in this store', sku=sku)
    return {
        'product': _product_row(product),
        'stock_qty': InventoryLedger(db).get_qty(store_id, product.id),
    }


def _invoice_row(invoice: Invoice, *, with_items: bool) -> dict:
    row = {
        'id': invoice.id,
        'store_id': invoice.store_id,
        'worker_id': invoice.worker_id,
        'status': invoice.status.value,
        'total_amount': str(invoice.total_amount),
        'total_items': invoice.total_items,
        'client_invoice_ref': invoice.client_invoice_ref,
        'pdf_url': invoice.pdf_url,
        'created_at': invoice.created_at,
        'voided_at': invoice.voided_at,
    }
    if with_items:
        row['items'] = [
            {
                'product_id': item.product_id,
                'sku': item.product.sku,
                'name': item.product.name,
                'qty': item.qty,
                'unit_price': str(item.unit_price),
                'line_total': str(item.line_total),
            }
            for item in invoice.items
        ]
    return row


def list_invoices(
    db: Session,
    *,
    store_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 200,
) -> list[dict]:
    query = select(Invoice).options(selectinload(Invoice.items).joinedload(InvoiceItem.product))
    if store_id is not None:
        query = query.where(Invoice.store_id == store_id)
    if date_from is not None:
        query = query.where(Invoice.created_at >= date_from)
    if date_to is not None:
        query = query.where(Invoice.created_at <= date_to)
    invoices = db.execute(query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit)).scalars().all()
    return [_invoice_row(invoice, with_items=True) for invoice in invoices]


def get_invoice_detail(db: Session, *, invoice_id: int) -> dict:
    invoice = db.execute(
        select(Invoice)
        .options(selectinload(Invoice.items).joinedload(InvoiceItem.product))
        .where(Invoice.id == invoice_id)
    ).scalar_one_or_none()
    if not invoice:
        raise NotFoundError('Invoice not found', invoice_id=invoice_id)
    row = _invoice_row(invoice, with_items=True)
    store = db.get(Store, invoice.store_id)
    row['store'] = {'id': store.id, 'name': store.name, 'city': store.city, 'region': store.region} if store else None
    return row


def day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def today_stats(db: Session, *, store_id: int, worker_id: int, tz_name: str = 'UTC') -> dict:
    today = datetime.now(tz=ZoneInfo(tz_name)).date()
    start, end = day_bounds(today, tz_name)
    amounts = db.execute(
        select(Invoice.total_amount).where(
            Invoice.store_id == store_id,
            Invoice.worker_id == worker_id,
            Invoice.status == InvoiceStatus.COMPLETED,
            Invoice.created_at >= start,
            Invoice.created_at < end,
        )
    ).scalars().all()
    return {
        'sales_count': len(amounts),
        'sales_amount': str(sum(amounts, Money.zero())),
        'date': today.isoformat(),
    }

