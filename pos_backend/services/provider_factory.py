from __future__ import annotations

from functools import lru_cache

from pos_backend.config import settings
from pos_backend.services.document_renderer import HtmlInvoiceRenderer
from pos_backend.services.event_notifier import LoggingEventNotifier, WebhookEventNotifier


@lru_cache(maxsize=1)
def get_event_notifier():
    notifier = settings.event_notifier.strip().lower()
    if notifier == 'webhook':
        if not settings.event_webhook_url:
            raise RuntimeError('EVENT_WEBHOOK_URL is required when EVENT_NOTIFIER=webhook')
        return WebhookEventNotifier(settings.event_webhook_url, timeout_seconds=settings.event_webhook_timeout_seconds)
    return LoggingEventNotifier()


@lru_cache(maxsize=1)
def get_document_renderer():
    renderer = settings.document_renderer.strip().lower()
    if renderer == 'none':
        return None
    return HtmlInvoiceRenderer(settings.storage_path)
