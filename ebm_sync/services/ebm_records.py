from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from ebm_sync.services.ebm_tax_service import validate_tax_type

DEFAULT_TAX_TYPE = 'A'
CASH_PAYMENT_METHOD = 'CASH'
INSUREE_CLIENT_TYPE = 'INSUREE'


class SaleType(str, Enum):
    SALE = 'SALE'
    REFUND = 'REFUND'


def _validate_percent(value: Decimal | None, label: str) -> None:
    if value is None:
        return
    if value < 0 or value > 100:
        raise ValueError(f'{label} must be between 0 and 100')


@dataclass(frozen=True)
class ItemRecord:
    id: str
    name: str
    product_code: str = ''
    tax_code: str | None = None
    tax_rate: Decimal = Decimal('0')
    insurance_price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.tax_code is not None:
            validate_tax_type(self.tax_code)
        _validate_percent(self.tax_rate, 'Item tax rate')

    @property
    def tax_type(self) -> str:
        return self.tax_code or DEFAULT_TAX_TYPE


@dataclass(frozen=True)
class StockReceiptRecord:
    id: str
    item: ItemRecord
    received_date: date | datetime
    quantity_received: Decimal = Decimal('0')
    unit_cost: Decimal = Decimal('0')
    total_cost: Decimal = Decimal('0')
    pack_size: int = 1
    expiry_date: date | datetime | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.pack_size < 1:
            raise ValueError('Pack size must be at least 1')


@dataclass(frozen=True)
class SupplierRecord:
    name: str | None = None
    tin: str | None = None


@dataclass(frozen=True)
class PurchaseOrderLineRecord:
    item: ItemRecord
    quantity: Decimal = Decimal('0')
    unit_price: Decimal = Decimal('0')
    total_price: Decimal = Decimal('0')
    pack_size: int = 1
    quantity_issued: Decimal | None = None
    expiry_date: date | datetime | None = None

    def __post_init__(self) -> None:
        if self.pack_size < 1:
            raise ValueError('Pack size must be at least 1')

    @property
    def effective_quantity(self) -> Decimal:
        # Issued quantity wins when it is set and non-zero.
        return self.quantity_issued or self.quantity


@dataclass(frozen=True)
class PurchaseOrderRecord:
    id: str
    created_at: date | datetime
    lines: tuple[PurchaseOrderLineRecord, ...] = ()
    supplier: SupplierRecord | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ClientRecord:
    name: str | None = None
    tin: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class InsuranceCardRecord:
    affiliation_number: str | None = None
    insurer_code: str | None = None
    insurer_name: str | None = None


@dataclass(frozen=True)
class SaleLineRecord:
    item: ItemRecord
    quantity: Decimal = Decimal('0')
    total_amount: Decimal = Decimal('0')
    insurance_covered_per_unit: Decimal | None = None


@dataclass(frozen=True)
class SaleRecord:
    id: str
    lines: tuple[SaleLineRecord, ...] = ()
    created_at: date | datetime | None = None
    payment_method: str = CASH_PAYMENT_METHOD
    sale_type: SaleType = SaleType.SALE
    client: ClientRecord | None = None
    client_type: str | None = None
    insurance_card: InsuranceCardRecord | None = None
    insurance_percentage: Decimal | None = None
    parent_receipt_no: int | None = None
    refund_reason_code: str | None = None
    refund_reason_note: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.sale_type, SaleType):
            raise ValueError(f'Unsupported sale type: {self.sale_type!r}')
        _validate_percent(self.insurance_percentage, 'Client pay percentage')

    @property
    def is_refund(self) -> bool:
        return self.sale_type == SaleType.REFUND


@dataclass(frozen=True)
class InsuranceRecord:
    code: str
    name: str
    coverage_rate: Decimal
    active: bool = True

    def __post_init__(self) -> None:
        if not self.code.strip():
            raise ValueError('Insurance code is required')
        _validate_percent(self.coverage_rate, 'Insurance coverage rate')
