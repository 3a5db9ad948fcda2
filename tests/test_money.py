from __future__ import annotations

import unittest
from decimal import Decimal

from pos_backend.money import Money


class MoneyTests(unittest.TestCase):
    def test_builds_from_exact_values(self) -> None:
        self.assertEqual(Money.of('35.00').cents, 3500)
        self.assertEqual(Money.of(Decimal('12.5')).cents, 1250)
        self.assertEqual(Money.of(7).cents, 700)
        self.assertEqual(Money.of(Money(99)), Money(99))

    def test_rejects_float_and_extra_precision(self) -> None:
        with self.assertRaises(TypeError):
            Money.of(1.1)
        with self.assertRaises(TypeError):
            Money.of(True)
        with self.assertRaises(ValueError):
            Money.of('1.005')
        with self.assertRaises(ValueError):
            Money.of('abc')

    def test_arithmetic_and_sum(self) -> None:
        line = Money.of('35.00') * 3
        self.assertEqual(line, Money.of('105'))
        self.assertEqual(sum([Money.of('0.10'), Money.of('0.20')]), Money.of('0.30'))
        self.assertEqual(sum([], Money.zero()), Money.zero())
        self.assertTrue((Money.of('1') - Money.of('2')).is_negative())
        self.assertLess(Money.of('1.99'), Money.of('2'))

    def test_string_forms(self) -> None:
        self.assertEqual(str(Money.of('105.00')), '105')
        self.assertEqual(str(Money.of('12.50')), '12.5')
        self.assertEqual(str(Money.of('0.05')), '0.05')
        self.assertEqual(Money.of('105').display(), '105.00')
        self.assertEqual(Money.of('-3.5').display(), '-3.50')


if __name__ == '__main__':
    unittest.main()
