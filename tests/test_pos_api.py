from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from pos_backend.config import settings
from pos_backend.db import get_db
from pos_backend.main import create_app
from pos_backend.services.document_renderer import HtmlInvoiceRenderer

from pos_fixtures import PosDatabaseTestCase


class PosApiTests(PosDatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        trusted = patch.object(settings, 'trust_principal_headers', True)
        trusted.start()
        self.addCleanup(trusted.stop)
        renderer = HtmlInvoiceRenderer(str(self.tmp_path / 'storage'))
        app = create_app(self.session_factory, notifier=self.notifier, renderer=renderer)

        def _get_db():
            with self.session_factory() as db:
                yield db

        app.dependency_overrides[get_db] = _get_db
        self.client = TestClient(app)

    def _headers(self, principal_id: int, role: str, store_id: int | None = None) -> dict:
        headers = {'X-Principal-Id': str(principal_id), 'X-Principal-Role': role}
        if store_id is not None:
            headers['X-Principal-Store-Id'] = str(store_id)
        return headers

    @property
    def cashier(self) -> dict:
        return self._headers(self.ids.cashier_id, 'SALES', self.ids.store_id)

    @property
    def admin(self) -> dict:
        return self._headers(self.ids.admin_id, 'ADMIN')

    @property
    def clerk(self) -> dict:
        return self._headers(self.ids.stock_clerk_id, 'INVENTORY', self.ids.store_id)

    def test_requires_principal(self) -> None:
        response = self.client.post('/pos/scan', json={'sku': 'RICE-5KG'})
        self.assertEqual(response.status_code, 401)

    def test_principal_headers_ignored_unless_trusted(self) -> None:
        with patch.object(settings, 'trust_principal_headers', False):
            scan = self.client.post('/pos/scan', json={'sku': 'RICE-5KG'}, headers=self.admin)
            listing = self.client.get('/inventory', headers=self.admin)
        self.assertEqual(scan.status_code, 401)
        self.assertEqual(listing.status_code, 401)

        trusted = self.client.post('/pos/scan', json={'sku': 'RICE-5KG'}, headers=self.cashier)
        self.assertEqual(trusted.status_code, 200)

    def test_scan_and_sell(self) -> None:
        scan = self.client.post('/pos/scan', json={'sku': 'RICE-5KG'}, headers=self.cashier)
        self.assertEqual(scan.status_code, 200)
        self.assertEqual(scan.json()['stock_qty'], 10)

        response = self.client.post(
            '/pos/invoices',
            json={'lines': [{'product_id': self.ids.rice_id, 'qty': 3}]},
            headers={**self.cashier, 'Idempotency-Key': 'till-1-0001'},
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['totals'], {'amount': '105', 'items': 3})
        self.assertFalse(body['replayed'])
        self.assertEqual(self.qty(self.ids.rice_id), 7)

        again = self.client.post(
            '/pos/invoices',
            json={'lines': [{'product_id': self.ids.rice_id, 'qty': 3}]},
            headers={**self.cashier, 'Idempotency-Key': 'till-1-0001'},
        )
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.json()['invoice_id'], body['invoice_id'])
        self.assertEqual(self.qty(self.ids.rice_id), 7)

    def test_insufficient_stock_is_conflict_with_details(self) -> None:
        response = self.client.post(
            '/pos/invoices',
            json={'lines': [{'product_id': self.ids.rice_id, 'qty': 50}]},
            headers=self.cashier,
        )
        self.assertEqual(response.status_code, 409)
        detail = response.json()['detail']
        self.assertEqual(detail['code'], 'INSUFFICIENT_STOCK')
        self.assertEqual((detail['sku'], detail['available'], detail['requested']), ('RICE-5KG', 10, 50))

    def test_sales_principal_is_pinned_to_store(self) -> None:
        response = self.client.post(
            '/pos/invoices',
            json={'store_id': self.ids.other_store_id, 'lines': [{'product_id': self.ids.rice_id, 'qty': 1}]},
            headers=self.cashier,
        )
        self.assertEqual(response.status_code, 403)

    def test_inventory_role_cannot_sell(self) -> None:
        response = self.client.post(
            '/pos/invoices',
            json={'lines': [{'product_id': self.ids.rice_id, 'qty': 1}]},
            headers=self.clerk,
        )
        self.assertEqual(response.status_code, 403)

    def test_void_and_document_download(self) -> None:
        created = self.client.post(
            '/pos/invoices',
            json={'lines': [{'product_id': self.ids.water_id, 'qty': 2}]},
            headers=self.cashier,
        ).json()
        invoice_id = created['invoice_id']

        document = self.client.get(f'/pos/invoices/{invoice_id}/document', headers=self.cashier)
        self.assertEqual(document.status_code, 200)
        self.assertIn('WATER-500', document.text)

        forbidden = self.client.post(f'/pos/invoices/{invoice_id}/void', headers=self.cashier)
        self.assertEqual(forbidden.status_code, 403)

        voided = self.client.post(f'/pos/invoices/{invoice_id}/void', json={'reason': 'wrong item'}, headers=self.admin)
        self.assertEqual(voided.status_code, 200)
        self.assertEqual(voided.json()['restored_items'], 2)
        self.assertEqual(self.qty(self.ids.water_id), 48)

        twice = self.client.delete(f'/pos/invoices/{invoice_id}', headers=self.admin)
        self.assertEqual(twice.status_code, 400)

        detail = self.client.get(f'/pos/invoices/{invoice_id}', headers=self.cashier)
        self.assertEqual(detail.json()['status'], 'VOID')

    def test_sync_endpoint_partitions_results(self) -> None:
        payload = {
            'invoices': [
                {'local_id': 'a', 'lines': [{'qty': 1, 'stock_quantity': 0, 'sku': 'RICE-5KG'}]},
                {'local_id': 'b', 'lines': [{'qty': -1, 'stock_quantity': 0, 'sku': 'RICE-5KG'}]},
                {'local_id': 'c', 'lines': [{'qty': 2, 'stock_quantity': 0, 'sku': 'WATER-500'}]},
            ]
        }
        response = self.client.post('/pos/invoices/sync', json=payload, headers=self.cashier)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item['local_id'] for item in body['synced']], ['a', 'c'])
        self.assertEqual([item['local_id'] for item in body['failed']], ['b'])

        stats = self.client.get('/pos/stats/today', headers=self.cashier).json()
        self.assertEqual(stats['sales_count'], 2)
        self.assertEqual(stats['sales_amount'], '37.4')

    def test_inventory_endpoints(self) -> None:
        added = self.client.post(
            '/inventory/stock',
            json={'store_id': self.ids.store_id, 'product_id': self.ids.rice_id, 'quantity': 6},
            headers=self.clerk,
        )
        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()['new_qty'], 16)

        too_many = self.client.post(
            '/inventory/stock',
            json={'store_id': self.ids.store_id, 'product_id': self.ids.rice_id, 'quantity': -20},
            headers=self.clerk,
        )
        self.assertEqual(too_many.status_code, 409)

        listing = self.client.get('/inventory', params={'store_id': self.ids.store_id}, headers=self.clerk)
        self.assertEqual({row['sku']: row['qty_on_hand'] for row in listing.json()}['RICE-5KG'], 16)

        check = self.client.get(f'/inventory/{self.ids.store_id}/{self.ids.rice_id}/ledger-check', headers=self.clerk)
        self.assertTrue(check.json()['consistent'])

        movements = self.client.get('/inventory/movements', params={'product_id': self.ids.rice_id}, headers=self.clerk)
        self.assertEqual(len(movements.json()), 2)

        denied = self.client.get('/inventory', headers=self.cashier)
        self.assertEqual(denied.status_code, 403)


if __name__ == '__main__':
    unittest.main()
