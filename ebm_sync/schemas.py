from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

EBM_SUCCESS_CODE = '000'
EBM_TRANSPORT_FAILURE_CODE = 'E999'

# The authority expects JSON numbers, not decimal strings.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float)]


class EbmModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


class FiscalResponse(EbmModel):
    result_cd: str
    result_msg: str = ''
    result_dt: str = ''
    data: Any = None

    @property
    def is_success(self) -> bool:
        return self.result_cd == EBM_SUCCESS_CODE


class EbmInitPayload(EbmModel):
    tin: str
    bhf_id: str
    dvc_srl_no: str


class EbmItemPayload(EbmModel):
    tin: str
    bhf_id: str
    item_cd: str
    item_cls_cd: str
    item_ty_cd: str
    item_nm: str
    orgn_nat_cd: str
    pkg_unit_cd: str
    qty_unit_cd: str
    tax_ty_cd: str
    dft_prc: Amount
    isrc_aplcb_yn: str
    use_yn: str
    regr_nm: str
    regr_id: str
    modr_nm: str
    modr_id: str


class EbmStockItem(EbmModel):
    item_seq: int
    item_cd: str
    item_cls_cd: str
    item_nm: str
    bcd: str | None
    pkg_unit_cd: str
    pkg: int
    qty_unit_cd: str
    qty: Amount
    item_expr_dt: str | None
    prc: Amount
    sply_amt: Amount
    tot_dc_amt: Amount
    taxbl_amt: Amount
    tax_ty_cd: str
    tax_amt: Amount
    tot_amt: Amount


class EbmStockPayload(EbmModel):
    tin: str
    bhf_id: str
    sar_no: int
    org_sar_no: int
    reg_ty_cd: str
    cust_tin: str | None
    cust_nm: str | None
    cust_bhf_id: str | None
    sar_ty_cd: str
    ocrn_dt: str
    tot_item_cnt: int
    tot_taxbl_amt: Amount
    tot_tax_amt: Amount
    tot_amt: Amount
    remark: str | None
    regr_id: str
    regr_nm: str
    modr_id: str
    modr_nm: str
    item_list: list[EbmStockItem]


class EbmPurchaseItem(EbmModel):
    item_seq: int
    item_cd: str
    item_cls_cd: str
    item_nm: str
    bcd: str | None
    spplr_item_cls_cd: str | None
    spplr_item_cd: str | None
    spplr_item_nm: str | None
    pkg_unit_cd: str
    pkg: int
    qty_unit_cd: str
    qty: Amount
    prc: Amount
    sply_amt: Amount
    dc_rt: Amount
    dc_amt: Amount
    taxbl_amt: Amount
    tax_ty_cd: str
    tax_amt: Amount
    tot_amt: Amount
    item_expr_dt: str | None


class TaxCategoryFields(EbmModel):
    taxbl_amt_a: Amount
    taxbl_amt_b: Amount
    taxbl_amt_c: Amount
    taxbl_amt_d: Amount
    tax_rt_a: Amount
    tax_rt_b: Amount
    tax_rt_c: Amount
    tax_rt_d: Amount
    tax_amt_a: Amount
    tax_amt_b: Amount
    tax_amt_c: Amount
    tax_amt_d: Amount


class EbmPurchasePayload(TaxCategoryFields):
    tin: str
    bhf_id: str
    invc_no: int
    org_invc_no: int
    spplr_tin: str | None
    spplr_bhf_id: str | None
    spplr_nm: str | None
    spplr_invc_no: str | None
    reg_ty_cd: str
    pchs_ty_cd: str
    rcpt_ty_cd: str
    pmt_ty_cd: str
    pchs_stts_cd: str
    cfm_dt: str
    pchs_dt: str
    wrhs_dt: str
    cncl_req_dt: str
    cncl_dt: str
    rfd_dt: str
    tot_item_cnt: int
    tot_taxbl_amt: Amount
    tot_tax_amt: Amount
    tot_amt: Amount
    remark: str | None
    regr_id: str
    regr_nm: str
    modr_id: str
    modr_nm: str
    item_list: list[EbmPurchaseItem]


class EbmSalesItem(EbmModel):
    item_seq: int
    item_cd: str
    item_cls_cd: str
    item_nm: str
    bcd: str | None
    pkg_unit_cd: str
    pkg: int
    qty_unit_cd: str
    qty: Amount
    prc: Amount
    sply_amt: Amount
    dc_rt: Amount
    dc_amt: Amount
    isrcc_cd: str | None
    isrcc_nm: str | None
    isrc_rt: Amount | None
    isrc_amt: Amount | None
    tax_ty_cd: str
    taxbl_amt: Amount
    tax_amt: Amount
    tot_amt: Amount


class EbmReceiptData(EbmModel):
    cust_tin: str | None
    cust_mbl_no: str | None
    rpt_no: int
    trde_nm: str
    adrs: str
    top_msg: str
    btm_msg: str
    prchr_acptc_yn: str


class EbmSalesPayload(TaxCategoryFields):
    tin: str
    bhf_id: str
    invc_no: int
    org_invc_no: int
    cust_tin: str | None
    prc_ord_cd: str | None
    cust_nm: str | None
    sales_ty_cd: str
    rcpt_ty_cd: str
    pmt_ty_cd: str
    sales_stts_cd: str
    cfm_dt: str
    sales_dt: str
    stock_rls_dt: str
    cncl_req_dt: str | None
    cncl_dt: str | None
    rfd_dt: str | None
    rfd_rsn_cd: str | None
    tot_item_cnt: int
    tot_taxbl_amt: Amount
    tot_tax_amt: Amount
    tot_amt: Amount
    prchr_acptc_yn: str
    remark: str | None
    regr_id: str
    regr_nm: str
    modr_id: str
    modr_nm: str
    receipt: EbmReceiptData
    item_list: list[EbmSalesItem]


class EbmInsurancePayload(EbmModel):
    tin: str
    bhf_id: str
    isrcc_cd: str
    isrcc_nm: str
    isrc_rt: Amount
    use_yn: str
    regr_nm: str
    regr_id: str
    modr_nm: str
    modr_id: str


class EbmLookupRequest(EbmModel):
    tin: str
    bhf_id: str
    last_req_dt: str


class EbmCodeDetailData(EbmModel):
    cd: str
    cd_nm: str | None = None
    cd_desc: str | None = None
    use_yn: str | None = 'Y'
    srt_ord: int | None = None


class EbmCodeClassData(EbmModel):
    cd_cls: str
    cd_cls_nm: str | None = None
    cd_cls_desc: str | None = None
    use_yn: str | None = 'Y'
    dtl_list: list[EbmCodeDetailData] | None = None


class EbmNotice(EbmModel):
    notice_no: int
    title: str | None = None
    cont: str | None = None
    dtl_url: str | None = None
    regr_nm: str | None = None
    reg_dt: str | None = None
