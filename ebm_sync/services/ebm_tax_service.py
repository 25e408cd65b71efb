from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

TAX_CATEGORIES = ('A', 'B', 'C', 'D')
STANDARD_RATE_CATEGORY = 'B'
STANDARD_RATE = Decimal('18')
ZERO_RATE = Decimal('0')

CENTS = Decimal('0.01')
HUNDRED = Decimal('100')


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_tax_type(tax_type: str) -> str:
    if tax_type not in TAX_CATEGORIES:
        raise ValueError(f'Unsupported tax type code: {tax_type!r}')
    return tax_type


def exclusive_tax_amount(taxable_amount: Decimal, rate_percent: Decimal) -> Decimal:
    """Tax added on top of a net amount (stock movements, purchases)."""
    return round_amount(taxable_amount * (rate_percent / HUNDRED))


def inclusive_tax_amount(total_amount: Decimal, rate_percent: Decimal) -> Decimal:
    """Tax contained in a tax-inclusive total (sales)."""
    divisor = Decimal('1') + rate_percent / HUNDRED
    return round_amount(total_amount - total_amount / divisor)


@dataclass(frozen=True)
class TaxLine:
    tax_type: str
    taxable_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class TaxCategoryTotals:
    taxable_amount: Decimal
    rate: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class TaxSummary:
    by_category: dict[str, TaxCategoryTotals]
    total_taxable_amount: Decimal
    total_tax_amount: Decimal

    def category(self, tax_type: str) -> TaxCategoryTotals:
        return self.by_category[validate_tax_type(tax_type)]


def aggregate_taxes(lines: Iterable[TaxLine]) -> TaxSummary:
    materialized = list(lines)
    # Every category shows the standard rate as soon as one B line exists anywhere in the document.
    has_standard_rate_line = any(line.tax_type == STANDARD_RATE_CATEGORY for line in materialized)
    rate = STANDARD_RATE if has_standard_rate_line else ZERO_RATE

    by_category: dict[str, TaxCategoryTotals] = {}
    for category in TAX_CATEGORIES:
        matching = [line for line in materialized if line.tax_type == category]
        by_category[category] = TaxCategoryTotals(
            taxable_amount=sum((line.taxable_amount for line in matching), Decimal('0')),
            rate=rate,
            tax_amount=sum((line.tax_amount for line in matching), Decimal('0')),
        )

    return TaxSummary(
        by_category=by_category,
        total_taxable_amount=sum((line.taxable_amount for line in materialized), Decimal('0')),
        total_tax_amount=sum((line.tax_amount for line in materialized), Decimal('0')),
    )
