from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceCreated:
    invoice_id: int
    store_id: int
    total_amount: str
    created_at: datetime


@dataclass(frozen=True)
class InventoryUpdated:
    store_id: int
    product_id: int
    new_qty: int


@dataclass(frozen=True)
class InvoiceVoided:
    invoice_id: int
    store_id: int
    voided_at: datetime


class EventNotifier(Protocol):
    def invoice_created(self, fact: InvoiceCreated) -> None: ...

    def inventory_updated(self, fact: InventoryUpdated) -> None: ...

    def invoice_voided(self, fact: InvoiceVoided) -> None: ...


def _payload(event: str, fact) -> dict:
    data = asdict(fact)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return {'event': event, 'data': data}


class LoggingEventNotifier:
    def invoice_created(self, fact: InvoiceCreated) -> None:
        logger.info('event invoice.created %s', _payload('invoice.created', fact)['data'])

    def inventory_updated(self, fact: InventoryUpdated) -> None:
        logger.info('event inventory.updated %s', _payload('inventory.updated', fact)['data'])

    def invoice_voided(self, fact: InvoiceVoided) -> None:
        logger.info('event invoice.voided %s', _payload('invoice.voided', fact)['data'])


class WebhookEventNotifier:
    """Posts each fact as JSON to a single endpoint; delivery failures are logged, not raised."""

    def __init__(self, url: str, *, timeout_seconds: int = 5) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    def invoice_created(self, fact: InvoiceCreated) -> None:
        self._post(_payload('invoice.created', fact))

    def inventory_updated(self, fact: InventoryUpdated) -> None:
        self._post(_payload('inventory.updated', fact))

    def invoice_voided(self, fact: InvoiceVoided) -> None:
        self._post(_payload('invoice.voided', fact))

    def _post(self, payload: dict) -> None:
        req = Request(
            url=self.url,
            data=json.dumps(payload).encode('utf-8'),
            headers={'Content-Type': 'application/json'},
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            logger.warning('Event webhook rejected %s: %s %s', payload['event'], exc.code, body)
        except URLError as exc:
            logger.warning('Event webhook unreachable for %s: %s', payload['event'], exc.reason)
        except (TimeoutError, OSError) as exc:
            logger.warning('Event webhook failed for %s: %s', payload['event'], exc)
