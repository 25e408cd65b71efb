from __future__ import annotations

import http.client
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ebm_sync.config import settings
from ebm_sync.models import Company, User
from ebm_sync.schemas import (
    EBM_TRANSPORT_FAILURE_CODE,
    EbmLookupRequest,
    EbmModel,
    FiscalResponse,
)
from ebm_sync.services.ebm_format_service import resolve_branch_code
from ebm_sync.services.ebm_payload_mapper import (
    build_init_payload,
    build_insurance_payload,
    build_item_payload,
    build_purchase_payload,
    build_sale_payload,
    build_stock_payload,
)
from ebm_sync.services.ebm_records import (
    InsuranceRecord,
    ItemRecord,
    PurchaseOrderRecord,
    SaleRecord,
    StockReceiptRecord,
)

logger = logging.getLogger(__name__)


class EbmEndpoint(str, Enum):
    INITIALIZE_DEVICE = '/initializer/selectInitInfo'
    SAVE_ITEM = '/items/saveItems'
    SAVE_STOCK = '/stock/saveStockItems'
    SAVE_PURCHASE = '/trnsPurchase/savePurchases'
    SAVE_SALE = '/trnsSales/saveSales'
    SAVE_INSURANCE = '/branches/saveBrancheInsurances'
    SELECT_CODES = '/code/selectCodes'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def transport_failure(message: str) -> FiscalResponse:
    return FiscalResponse(
        result_cd=EBM_TRANSPORT_FAILURE_CODE,
        result_msg=message or 'Connection to EBM service failed',
        result_dt=_now().isoformat(),
        data=None,
    )


def _error_detail(exc: HTTPError) -> str:
    if not exc.fp:
        return ''
    try:
        return exc.read().decode('utf-8', errors='ignore')
    except (OSError, http.client.HTTPException):
        return ''


@dataclass
class EbmGateway:
    base_url: str
    headers: dict[str, str]
    timeout_seconds: int
    notices_path: str = '/notices/selectNotices'

    @classmethod
    def from_settings(cls) -> EbmGateway:
        headers = {'Content-Type': 'application/json'}
        if settings.ebm_api_key:
            headers['Authorization'] = f'Bearer {settings.ebm_api_key}'
        return cls(
            base_url=settings.ebm_api_base_url.rstrip('/'),
            headers=headers,
            timeout_seconds=settings.ebm_timeout_seconds,
            notices_path=settings.ebm_notices_path,
        )

    def send(self, endpoint: EbmEndpoint | str, payload: EbmModel | dict) -> FiscalResponse:
        """POST a payload and return the authority's envelope.

        Never raises for transport problems: HTTP errors, network errors and
        unreadable bodies all come back as an ``E999`` envelope.
        """
        path = endpoint.value if isinstance(endpoint, EbmEndpoint) else endpoint
        body = payload.to_wire() if isinstance(payload, EbmModel) else payload
        req = Request(
            url=f'{self.base_url}{path}',
            data=json.dumps(body).encode('utf-8'),
            headers=self.headers,
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                parsed = json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            detail = _error_detail(exc)
            logger.warning('EBM API error %s on %s: %s', exc.code, path, detail)
            return transport_failure(f'EBM API error {exc.code}: {detail or exc.reason}')
        except URLError as exc:
            logger.warning('EBM API network error on %s: %s', path, exc.reason)
            return transport_failure(f'EBM API network error: {exc.reason}')
        except OSError as exc:
            logger.warning('EBM API transport error on %s: %s', path, exc)
            return transport_failure(f'EBM API transport error: {exc}')
        except http.client.HTTPException as exc:
            logger.warning('EBM API sent a broken HTTP response on %s: %r', path, exc)
            return transport_failure(f'EBM API sent a broken HTTP response: {exc!r}')
        except ValueError as exc:
            logger.warning('EBM API returned an unreadable body on %s: %s', path, exc)
            return transport_failure(f'EBM API returned invalid JSON: {exc}')

        if not isinstance(parsed, dict):
            return transport_failure('EBM API returned an unexpected response body')
        try:
            result = FiscalResponse.model_validate(parsed)
        except ValidationError as exc:
            return transport_failure(f'EBM API returned a malformed envelope: {exc.error_count()} error(s)')

        if not result.is_success:
            logger.info('EBM %s answered %s: %s', path, result.result_cd, result.result_msg)
        return result

    def initialize_device(self, tin: str | None, branch_code: str | None, device_serial: str) -> FiscalResponse:
        return self.send(EbmEndpoint.INITIALIZE_DEVICE, build_init_payload(tin, branch_code, device_serial))

    def save_item(
        self,
        db: Session,
        item: ItemRecord,
        *,
        company: Company,
        actor: User,
        branch_id: str | None = None,
    ) -> FiscalResponse:
        payload = build_item_payload(
            item,
            company=company,
            actor=actor,
            branch_code=resolve_branch_code(db, branch_id),
        )
        return self.send(EbmEndpoint.SAVE_ITEM, payload)

    def save_stock(
        self,
        db: Session,
        receipt: StockReceiptRecord,
        *,
        company: Company,
        actor: User,
        branch_id: str | None = None,
    ) -> FiscalResponse:
        payload = build_stock_payload(
            receipt,
            company=company,
            actor=actor,
            branch_code=resolve_branch_code(db, branch_id),
        )
        return self.send(EbmEndpoint.SAVE_STOCK, payload)

    def save_purchase(
        self,
        db: Session,
        order: PurchaseOrderRecord,
        *,
        company: Company,
        actor: User,
        branch_id: str | None = None,
    ) -> FiscalResponse:
        payload = build_purchase_payload(
            order,
            company=company,
            actor=actor,
            branch_code=resolve_branch_code(db, branch_id),
        )
        return self.send(EbmEndpoint.SAVE_PURCHASE, payload)

    def save_sale(
        self,
        db: Session,
        sale: SaleRecord,
        *,
        company: Company,
        actor: User,
        branch_id: str | None = None,
    ) -> FiscalResponse:
        payload = build_sale_payload(
            sale,
            company=company,
            actor=actor,
            branch_code=resolve_branch_code(db, branch_id),
        )
        logger.debug('EBM sales payload for %s: %s', sale.id, payload.to_wire())
        return self.send(EbmEndpoint.SAVE_SALE, payload)

    def save_insurance(
        self,
        db: Session,
        insurance: InsuranceRecord,
        *,
        company: Company,
        actor: User,
        branch_id: str | None = None,
    ) -> FiscalResponse:
        payload = build_insurance_payload(
            insurance,
            company=company,
            actor=actor,
            branch_code=resolve_branch_code(db, branch_id),
        )
        return self.send(EbmEndpoint.SAVE_INSURANCE, payload)

    def fetch_codes(self, tin: str, branch_code: str, last_request_at: str) -> FiscalResponse:
        return self.send(
            EbmEndpoint.SELECT_CODES,
            EbmLookupRequest(tin=tin, bhf_id=branch_code, last_req_dt=last_request_at),
        )

    def fetch_notices(self, tin: str, branch_code: str, last_request_at: str) -> FiscalResponse:
        return self.send(
            self.notices_path,
            EbmLookupRequest(tin=tin, bhf_id=branch_code, last_req_dt=last_request_at),
        )
