from __future__ import annotations

import unittest
from decimal import Decimal

from ebm_sync.services.ebm_tax_service import (
    TaxLine,
    aggregate_taxes,
    exclusive_tax_amount,
    inclusive_tax_amount,
    validate_tax_type,
)


class TaxAggregationTests(unittest.TestCase):
    def test_any_b_line_sets_standard_rate_on_every_category(self) -> None:
        summary = aggregate_taxes(
            [
                TaxLine(tax_type='A', taxable_amount=Decimal('100'), tax_amount=Decimal('0')),
                TaxLine(tax_type='B', taxable_amount=Decimal('50'), tax_amount=Decimal('9.00')),
            ]
        )

        self.assertEqual(summary.category('A').rate, Decimal('18'))
        self.assertEqual(summary.category('B').rate, Decimal('18'))
        self.assertEqual(summary.category('D').rate, Decimal('18'))
        self.assertEqual(summary.category('A').taxable_amount, Decimal('100'))
        self.assertEqual(summary.category('B').tax_amount, Decimal('9.00'))
        self.assertEqual(summary.category('C').taxable_amount, Decimal('0'))
        self.assertEqual(summary.total_taxable_amount, Decimal('150'))
        self.assertEqual(summary.total_tax_amount, Decimal('9.00'))

    def test_rate_is_zero_without_b_lines(self) -> None:
        summary = aggregate_taxes(
            [
                TaxLine(tax_type='A', taxable_amount=Decimal('100'), tax_amount=Decimal('0')),
                TaxLine(tax_type='C', taxable_amount=Decimal('20'), tax_amount=Decimal('0')),
            ]
        )

        for category in ('A', 'B', 'C', 'D'):
            self.assertEqual(summary.category(category).rate, Decimal('0'))
        self.assertEqual(summary.category('C').taxable_amount, Decimal('20'))

    def test_empty_document(self) -> None:
        summary = aggregate_taxes([])
        self.assertEqual(summary.total_taxable_amount, Decimal('0'))
        self.assertEqual(summary.category('A').rate, Decimal('0'))

    def test_unknown_tax_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            validate_tax_type('E')


class TaxAmountTests(unittest.TestCase):
    def test_exclusive_tax_is_added_on_top(self) -> None:
        self.assertEqual(exclusive_tax_amount(Decimal('50'), Decimal('18')), Decimal('9.00'))
        self.assertEqual(exclusive_tax_amount(Decimal('10.05'), Decimal('18')), Decimal('1.81'))

    def test_inclusive_tax_is_contained_in_total(self) -> None:
        self.assertEqual(inclusive_tax_amount(Decimal('118'), Decimal('18')), Decimal('18.00'))
        self.assertEqual(inclusive_tax_amount(Decimal('118'), Decimal('0')), Decimal('0.00'))

    def test_inclusive_tax_recovers_net_base_within_rounding(self) -> None:
        rate = Decimal('18')
        for total in (Decimal('236'), Decimal('99.99'), Decimal('0.59'), Decimal('12345.67')):
            with self.subTest(total=total):
                tax = inclusive_tax_amount(total, rate)
                net = total / (Decimal('1') + rate / Decimal('100'))
                self.assertLessEqual(abs((total - tax) - net), Decimal('0.01'))


if __name__ == '__main__':
    unittest.main()
