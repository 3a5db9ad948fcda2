from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from pos_backend.money import Money

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates'


@dataclass(frozen=True)
class DocumentLine:
    sku: str
    name: str
    qty: int
    unit_price: Money
    line_total: Money


@dataclass(frozen=True)
class InvoiceDocument:
    invoice_id: int
    store_name: str
    store_city: str | None
    store_region: str | None
    status: str
    created_at: datetime
    lines: list[DocumentLine]
    total_amount: Money
    total_items: int


class DocumentRenderer(Protocol):
    def render_invoice(self, document: InvoiceDocument) -> str: ...

    def exists(self, path: str) -> bool: ...

    def resolve(self, path: str) -> Path: ...


class HtmlInvoiceRenderer:
    """Renders invoices to HTML files under ``<storage>/invoices`` and returns the relative path."""

    media_type = 'text/html'

    def __init__(self, storage_path: str) -> None:
        self.root = Path(storage_path)
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(['html']),
        )

    def render_invoice(self, document: InvoiceDocument) -> str:
        html = self.env.get_template('invoice.html').render(invoice=document)
        relative = f'invoices/invoice-{document.invoice_id}.html'
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix('.tmp')
        tmp.write_text(html, encoding='utf-8')
        tmp.replace(target)
        return relative

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def resolve(self, path: str) -> Path:
        return self.root / path
