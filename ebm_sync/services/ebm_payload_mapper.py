from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from ebm_sync.config import settings
from ebm_sync.models import Company, User
from ebm_sync.schemas import (
    EbmInitPayload,
    EbmInsurancePayload,
    EbmItemPayload,
    EbmPurchaseItem,
    EbmPurchasePayload,
    EbmReceiptData,
    EbmSalesItem,
    EbmSalesPayload,
    EbmStockItem,
    EbmStockPayload,
)
from ebm_sync.services.ebm_format_service import (
    DEFAULT_BRANCH_CODE,
    actor_id,
    actor_name,
    classify_item_type,
    format_ebm_date,
    format_ebm_timestamp,
    format_tin,
    generate_reference,
)
from ebm_sync.services.ebm_records import (
    CASH_PAYMENT_METHOD,
    INSUREE_CLIENT_TYPE,
    ItemRecord,
    InsuranceRecord,
    PurchaseOrderRecord,
    SaleRecord,
    StockReceiptRecord,
)
from ebm_sync.services.ebm_tax_service import (
    TaxLine,
    TaxSummary,
    aggregate_taxes,
    exclusive_tax_amount,
    inclusive_tax_amount,
    round_amount,
)

DEFAULT_ITEM_CLASS_CODE = '5059690800'
ORIGIN_COUNTRY_CODE = 'RW'
PACKAGE_UNIT_CODE = 'NT'
STOCK_PACKAGE_UNIT_CODE = 'AM'
QUANTITY_UNIT_CODE = 'U'

MANUAL_REGISTRATION = 'M'
STOCK_IN_PURCHASE = '11'
NORMAL_TRANSACTION = 'N'
PURCHASE_RECEIPT = 'P'
SALE_RECEIPT = 'S'
REFUND_RECEIPT = 'R'
CASH_PAYMENT = '01'
CREDIT_PAYMENT = '02'
APPROVED_STATUS = '02'
DEFAULT_REFUND_REASON = '05'

ZERO = Decimal('0')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _optional_date(value: date | datetime | None) -> str | None:
    return format_ebm_date(value) if value is not None else None


def _tax_fields(summary: TaxSummary) -> dict:
    fields: dict = {}
    for category, totals in summary.by_category.items():
        suffix = category.lower()
        fields[f'taxbl_amt_{suffix}'] = totals.taxable_amount
        fields[f'tax_rt_{suffix}'] = totals.rate
        fields[f'tax_amt_{suffix}'] = totals.tax_amount
    return fields


def _registrar_fields(actor: User) -> dict:
    name = actor_name(actor)
    identifier = actor_id(actor)
    return {
        'regr_nm': name,
        'regr_id': identifier,
        'modr_nm': name,
        'modr_id': identifier,
    }


def _company_address(company: Company) -> str:
    parts = [part.strip() for part in (company.sector, company.district) if part and part.strip()]
    return ', '.join(parts)


def build_init_payload(tin: str | None, branch_code: str | None, device_serial: str) -> EbmInitPayload:
    return EbmInitPayload(
        tin=format_tin(tin),
        bhf_id=branch_code or DEFAULT_BRANCH_CODE,
        dvc_srl_no=device_serial,
    )


def build_item_payload(item: ItemRecord, *, company: Company, actor: User, branch_code: str) -> EbmItemPayload:
    default_price = item.insurance_price or ZERO
    return EbmItemPayload(
        tin=format_tin(company.tin),
        bhf_id=branch_code,
        item_cd=item.product_code or '',
        item_cls_cd=DEFAULT_ITEM_CLASS_CODE,
        item_ty_cd=classify_item_type(item.name),
        item_nm=item.name or '',
        orgn_nat_cd=ORIGIN_COUNTRY_CODE,
        pkg_unit_cd=PACKAGE_UNIT_CODE,
        qty_unit_cd=QUANTITY_UNIT_CODE,
        tax_ty_cd=item.tax_type,
        dft_prc=default_price,
        isrc_aplcb_yn='Y' if default_price > 0 else 'N',
        use_yn='Y',
        **_registrar_fields(actor),
    )


def build_stock_payload(
    receipt: StockReceiptRecord,
    *,
    company: Company,
    actor: User,
    branch_code: str,
) -> EbmStockPayload:
    reference = generate_reference(receipt.id)
    supply_amount = receipt.total_cost or ZERO
    tax_amount = exclusive_tax_amount(supply_amount, receipt.item.tax_rate)

    line = EbmStockItem(
        item_seq=1,
        item_cd=receipt.item.product_code or '',
        item_cls_cd=DEFAULT_ITEM_CLASS_CODE,
        item_nm=receipt.item.name or '',
        bcd=None,
        pkg_unit_cd=STOCK_PACKAGE_UNIT_CODE,
        pkg=receipt.pack_size,
        qty_unit_cd=QUANTITY_UNIT_CODE,
        qty=receipt.quantity_received or ZERO,
        item_expr_dt=_optional_date(receipt.expiry_date),
        prc=receipt.unit_cost or ZERO,
        sply_amt=supply_amount,
        tot_dc_amt=ZERO,
        taxbl_amt=supply_amount,
        tax_ty_cd=receipt.item.tax_type,
        tax_amt=tax_amount,
        tot_amt=supply_amount,
    )

    return EbmStockPayload(
        tin=format_tin(company.tin),
        bhf_id=branch_code,
        sar_no=reference,
        org_sar_no=reference,
        reg_ty_cd=MANUAL_REGISTRATION,
        cust_tin=None,
        cust_nm=None,
        cust_bhf_id=None,
        sar_ty_cd=STOCK_IN_PURCHASE,
        ocrn_dt=format_ebm_date(receipt.received_date),
        tot_item_cnt=1,
        tot_taxbl_amt=supply_amount,
        tot_tax_amt=tax_amount,
        tot_amt=supply_amount,
        remark=receipt.notes or None,
        item_list=[line],
        **_registrar_fields(actor),
    )


def build_purchase_payload(
    order: PurchaseOrderRecord,
    *,
    company: Company,
    actor: User,
    branch_code: str,
    now: datetime | None = None,
) -> EbmPurchasePayload:
    confirmed_at = now or _now()
    lines: list[EbmPurchaseItem] = []
    for index, line in enumerate(order.lines, start=1):
        supply_amount = line.total_price or ZERO
        tax_amount = exclusive_tax_amount(supply_amount, line.item.tax_rate)
        lines.append(
            EbmPurchaseItem(
                item_seq=index,
                item_cd=line.item.product_code or '',
                item_cls_cd=DEFAULT_ITEM_CLASS_CODE,
                item_nm=line.item.name or '',
                bcd=None,
                spplr_item_cls_cd=None,
                spplr_item_cd=None,
                spplr_item_nm=None,
                pkg_unit_cd=PACKAGE_UNIT_CODE,
                pkg=line.pack_size,
                qty_unit_cd=QUANTITY_UNIT_CODE,
                qty=line.effective_quantity or ZERO,
                prc=line.unit_price or ZERO,
                sply_amt=supply_amount,
                dc_rt=ZERO,
                dc_amt=ZERO,
                taxbl_amt=supply_amount,
                tax_ty_cd=line.item.tax_type,
                tax_amt=tax_amount,
                tot_amt=supply_amount + tax_amount,
                item_expr_dt=_optional_date(line.expiry_date),
            )
        )

    summary = aggregate_taxes(
        TaxLine(tax_type=line.tax_ty_cd, taxable_amount=line.taxbl_amt, tax_amount=line.tax_amt) for line in lines
    )
    supplier = order.supplier

    return EbmPurchasePayload(
        tin=format_tin(company.tin),
        bhf_id=branch_code,
        invc_no=generate_reference(order.id),
        org_invc_no=0,
        spplr_tin=format_tin(supplier.tin) if supplier and supplier.tin else None,
        spplr_bhf_id=DEFAULT_BRANCH_CODE,
        spplr_nm=(supplier.name or None) if supplier else None,
        spplr_invc_no=None,
        reg_ty_cd=MANUAL_REGISTRATION,
        pchs_ty_cd=NORMAL_TRANSACTION,
        rcpt_ty_cd=PURCHASE_RECEIPT,
        pmt_ty_cd=CASH_PAYMENT,
        pchs_stts_cd=APPROVED_STATUS,
        cfm_dt=format_ebm_timestamp(confirmed_at),
        pchs_dt=format_ebm_date(order.created_at),
        wrhs_dt='',
        cncl_req_dt='',
        cncl_dt='',
        rfd_dt='',
        tot_item_cnt=len(lines),
        tot_taxbl_amt=summary.total_taxable_amount,
        tot_tax_amt=summary.total_tax_amount,
        tot_amt=sum((line.tot_amt for line in lines), ZERO),
        remark=order.notes or None,
        item_list=lines,
        **_tax_fields(summary),
        **_registrar_fields(actor),
    )


def _sale_payment_type(sale: SaleRecord) -> str:
    # Insurees and TIN-bearing buyers are always reported as credit sales.
    if sale.client_type == INSUREE_CLIENT_TYPE or (sale.client and sale.client.tin):
        return CREDIT_PAYMENT
    if (sale.payment_method or '').upper() == CASH_PAYMENT_METHOD:
        return CASH_PAYMENT
    return CREDIT_PAYMENT


def build_sale_payload(
    sale: SaleRecord,
    *,
    company: Company,
    actor: User,
    branch_code: str,
    now: datetime | None = None,
) -> EbmSalesPayload:
    confirmed_at = format_ebm_timestamp(now or _now())
    card = sale.insurance_card
    client = sale.client

    lines: list[EbmSalesItem] = []
    for index, line in enumerate(sale.lines, start=1):
        quantity = abs(line.quantity or ZERO)
        total_amount = abs(line.total_amount or ZERO)

        insurance_rate = None
        insurance_amount = None
        if sale.insurance_percentage is not None:
            # Stored as the share the client pays; the authority wants the insurer's share.
            insurance_rate = Decimal('100') - sale.insurance_percentage
            if line.insurance_covered_per_unit:
                insurance_amount = abs(round_amount(line.insurance_covered_per_unit * quantity))

        lines.append(
            EbmSalesItem(
                item_seq=index,
                item_cd=line.item.product_code or '',
                item_cls_cd=DEFAULT_ITEM_CLASS_CODE,
                item_nm=line.item.name or '',
                bcd=None,
                pkg_unit_cd=PACKAGE_UNIT_CODE,
                pkg=1,
                qty_unit_cd=QUANTITY_UNIT_CODE,
                qty=quantity,
                prc=round_amount(total_amount / quantity) if quantity else ZERO,
                sply_amt=total_amount,
                dc_rt=ZERO,
                dc_amt=ZERO,
                isrcc_cd=card.insurer_code if card else None,
                isrcc_nm=card.insurer_name if card else None,
                isrc_rt=insurance_rate,
                isrc_amt=insurance_amount,
                tax_ty_cd=line.item.tax_type,
                taxbl_amt=total_amount,
                tax_amt=inclusive_tax_amount(total_amount, line.item.tax_rate),
                tot_amt=total_amount,
            )
        )

    summary = aggregate_taxes(
        TaxLine(tax_type=line.tax_ty_cd, taxable_amount=line.taxbl_amt, tax_amount=line.tax_amt) for line in lines
    )

    purchase_code = card.affiliation_number if card and card.affiliation_number else None
    client_tin = format_tin(client.tin) if client and client.tin else None

    if sale.is_refund:
        top_message = settings.ebm_receipt_refund_top_message
        remark = sale.notes or sale.refund_reason_note or None
    else:
        top_message = settings.ebm_receipt_top_message
        remark = sale.notes or None

    receipt = EbmReceiptData(
        # Without a purchase code the authority rejects a buyer TIN on the receipt.
        cust_tin=client_tin if purchase_code else None,
        cust_mbl_no=(client.phone or None) if client else None,
        rpt_no=1,
        trde_nm=company.name or '',
        adrs=_company_address(company),
        top_msg=top_message,
        btm_msg=settings.ebm_receipt_bottom_message,
        prchr_acptc_yn='N',
    )

    return EbmSalesPayload(
        tin=format_tin(company.tin),
        bhf_id=branch_code,
        invc_no=generate_reference(sale.id),
        org_invc_no=(sale.parent_receipt_no or 0) if sale.is_refund else 0,
        cust_tin=client_tin,
        prc_ord_cd=purchase_code,
        cust_nm=(client.name or None) if client else None,
        sales_ty_cd=NORMAL_TRANSACTION,
        rcpt_ty_cd=REFUND_RECEIPT if sale.is_refund else SALE_RECEIPT,
        pmt_ty_cd=_sale_payment_type(sale),
        sales_stts_cd=APPROVED_STATUS,
        cfm_dt=confirmed_at,
        sales_dt=format_ebm_date(sale.created_at or now or _now()),
        stock_rls_dt=confirmed_at,
        cncl_req_dt=None,
        cncl_dt=None,
        rfd_dt=confirmed_at if sale.is_refund else None,
        rfd_rsn_cd=(sale.refund_reason_code or DEFAULT_REFUND_REASON) if sale.is_refund else None,
        tot_item_cnt=len(lines),
        tot_taxbl_amt=summary.total_taxable_amount,
        tot_tax_amt=round_amount(summary.total_tax_amount),
        tot_amt=sum((line.tot_amt for line in lines), ZERO),
        prchr_acptc_yn='N',
        remark=remark,
        receipt=receipt,
        item_list=lines,
        **_tax_fields(summary),
        **_registrar_fields(actor),
    )


def build_insurance_payload(
    insurance: InsuranceRecord,
    *,
    company: Company,
    actor: User,
    branch_code: str,
) -> EbmInsurancePayload:
    return EbmInsurancePayload(
        tin=format_tin(company.tin),
        bhf_id=branch_code,
        isrcc_cd=insurance.code.strip(),
        isrcc_nm=insurance.name,
        isrc_rt=insurance.coverage_rate,
        use_yn='Y' if insurance.active else 'N',
        **_registrar_fields(actor),
    )
