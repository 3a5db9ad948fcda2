from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from urllib.error import URLError

from pos_backend.services.event_notifier import InventoryUpdated, InvoiceCreated, InvoiceVoided, WebhookEventNotifier


class WebhookEventNotifierTests(unittest.TestCase):
    @patch('pos_backend.services.event_notifier.urlopen')
    def test_posts_json_payload(self, urlopen_mock) -> None:
        urlopen_mock.return_value.__enter__.return_value = MagicMock()
        notifier = WebhookEventNotifier('http://events.local/hook', timeout_seconds=2)

        notifier.invoice_created(
            InvoiceCreated(
                invoice_id=7,
                store_id=1,
                total_amount='105',
                created_at=datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc),
            )
        )

        request = urlopen_mock.call_args.args[0]
        self.assertEqual(urlopen_mock.call_args.kwargs['timeout'], 2)
        self.assertEqual(request.get_method(), 'POST')
        payload = json.loads(request.data.decode('utf-8'))
        self.assertEqual(payload['event'], 'invoice.created')
        self.assertEqual(payload['data']['total_amount'], '105')
        self.assertEqual(payload['data']['created_at'], '2026-10-19T08:00:00+00:00')

    @patch('pos_backend.services.event_notifier.urlopen')
    def test_unreachable_endpoint_is_logged_not_raised(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = URLError('connection refused')
        notifier = WebhookEventNotifier('http://events.local/hook')

        with self.assertLogs('pos_backend.services.event_notifier', level='WARNING'):
            notifier.invoice_voided(
                InvoiceVoided(invoice_id=7, store_id=1, voided_at=datetime(2026, 10, 19, tzinfo=timezone.utc))
            )

    @patch('pos_backend.services.event_notifier.urlopen')
    def test_read_timeout_is_logged_not_raised(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = TimeoutError('The read operation timed out')
        notifier = WebhookEventNotifier('http://events.local/hook', timeout_seconds=1)

        with self.assertLogs('pos_backend.services.event_notifier', level='WARNING') as logs:
            notifier.inventory_updated(InventoryUpdated(store_id=1, product_id=3, new_qty=0))

        self.assertIn('inventory.updated', logs.output[0])


if __name__ == '__main__':
    unittest.main()
