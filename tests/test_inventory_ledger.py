from __future__ import annotations

import unittest
from unittest.mock import patch

from pos_backend.errors import InvalidRequestError, StockConflictError
from pos_backend.models import MovementRefType, MovementType
from pos_backend.services.inventory_ledger import CATCH_UP_ATTEMPTS, InventoryLedger

from pos_fixtures import PosDatabaseTestCase


class InventoryLedgerTests(PosDatabaseTestCase):
    def test_opening_stock_is_recorded_as_movement(self) -> None:
        movements = self.movements(product_id=self.ids.rice_id)
        self.assertEqual(len(movements), 1)
        self.assertEqual(movements[0].type, MovementType.IN)
        self.assertEqual(movements[0].ref_type, MovementRefType.OPENING)
        self.assertEqual(self.qty(self.ids.rice_id), 10)
        self.assert_ledger_consistent(self.ids.rice_id)

    def test_decrement_refuses_to_go_negative(self) -> None:
        with self.session_factory() as db:
            ledger = InventoryLedger(db)
            self.assertFalse(
                ledger.try_decrement(self.ids.store_id, self.ids.rice_id, 11, ref_type=MovementRefType.INVOICE, ref_id='1')
            )
            self.assertTrue(
                ledger.try_decrement(self.ids.store_id, self.ids.rice_id, 10, ref_type=MovementRefType.INVOICE, ref_id='1')
            )
            self.assertFalse(
                ledger.try_decrement(self.ids.store_id, self.ids.rice_id, 1, ref_type=MovementRefType.INVOICE, ref_id='2')
            )
            db.commit()

        self.assertEqual(self.qty(self.ids.rice_id), 0)
        out = self.movements(product_id=self.ids.rice_id, type=MovementType.OUT)
        self.assertEqual([m.qty for m in out], [10])
        self.assert_ledger_consistent(self.ids.rice_id)

    def test_decrement_without_inventory_row_fails(self) -> None:
        with self.session_factory() as db:
            ledger = InventoryLedger(db)
            self.assertEqual(ledger.get_qty(self.ids.other_store_id, self.ids.rice_id), 0)
            self.assertFalse(
                ledger.try_decrement(self.ids.other_store_id, self.ids.rice_id, 1, ref_type=MovementRefType.INVOICE, ref_id='x')
            )

    def test_non_positive_quantities_are_rejected(self) -> None:
        with self.session_factory() as db:
            ledger = InventoryLedger(db)
            for qty in (0, -2, True):
                with self.assertRaises(InvalidRequestError):
                    ledger.increment(self.ids.store_id, self.ids.rice_id, qty, ref_type=MovementRefType.PURCHASE, ref_id=None)
                with self.assertRaises(InvalidRequestError):
                    ledger.try_decrement(self.ids.store_id, self.ids.rice_id, qty, ref_type=MovementRefType.INVOICE, ref_id=None)

    def test_ensure_at_least_only_raises_stock(self) -> None:
        with self.session_factory() as db:
            ledger = InventoryLedger(db)
            added = ledger.ensure_at_least(
                self.ids.store_id, self.ids.rice_id, 15, ref_type=MovementRefType.SYNC_CATCH_UP, ref_id='local-1'
            )
            unchanged = ledger.ensure_at_least(
                self.ids.store_id, self.ids.rice_id, 4, ref_type=MovementRefType.SYNC_CATCH_UP, ref_id='local-2'
            )
            db.commit()

        self.assertEqual(added, 5)
        self.assertEqual(unchanged, 0)
        self.assertEqual(self.qty(self.ids.rice_id), 15)
        catch_up = self.movements(product_id=self.ids.rice_id, ref_type=MovementRefType.SYNC_CATCH_UP)
        self.assertEqual([(m.type, m.qty, m.ref_id) for m in catch_up], [(MovementType.IN, 5, 'local-1')])
        self.assert_ledger_consistent(self.ids.rice_id)

    def test_ensure_at_least_creates_missing_row(self) -> None:
        with self.session_factory() as db:
            added = InventoryLedger(db).ensure_at_least(
                self.ids.other_store_id, self.ids.water_id, 3, ref_type=MovementRefType.SYNC_CATCH_UP, ref_id='l'
            )
            db.commit()
        self.assertEqual(added, 3)
        self.assertEqual(self.qty(self.ids.water_id, self.ids.other_store_id), 3)
        self.assert_ledger_consistent(self.ids.water_id, self.ids.other_store_id)

    def test_rollback_discards_counter_and_movement_together(self) -> None:
        with self.session_factory() as db:
            InventoryLedger(db).increment(self.ids.store_id, self.ids.rice_id, 5, ref_type=MovementRefType.PURCHASE, ref_id='po-1')
            db.rollback()
        self.assertEqual(self.qty(self.ids.rice_id), 10)
        self.assertEqual(self.movements(ref_type=MovementRefType.PURCHASE), [])
        self.assert_ledger_consistent(self.ids.rice_id)

    def test_ensure_at_least_gives_up_when_stock_keeps_moving(self) -> None:
        # a stale read never matches the stored count, so every compare-and-set misses
        with patch.object(InventoryLedger, 'get_qty', return_value=0) as get_qty:
            with self.session_factory() as db:
                with self.assertRaises(StockConflictError):
                    InventoryLedger(db).ensure_at_least(
                        self.ids.store_id, self.ids.rice_id, 15, ref_type=MovementRefType.SYNC_CATCH_UP, ref_id='local-9'
                    )
                db.rollback()

        self.assertEqual(get_qty.call_count, CATCH_UP_ATTEMPTS)
        self.assertEqual(self.qty(self.ids.rice_id), 10)
        self.assertEqual(self.movements(ref_type=MovementRefType.SYNC_CATCH_UP), [])


if __name__ == '__main__':
    unittest.main()
