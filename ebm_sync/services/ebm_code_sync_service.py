from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ebm_sync.config import settings
from ebm_sync.errors import EbmConfigurationError, EbmProtocolError
from ebm_sync.models import CodeSyncState, Company, EbmCodeClass, EbmCodeDetail, EbmCodeSyncStatus
from ebm_sync.schemas import EbmCodeClassData, FiscalResponse
from ebm_sync.services.ebm_format_service import DEFAULT_BRANCH_CODE, format_tin
from ebm_sync.services.ebm_gateway import EbmGateway

logger = logging.getLogger(__name__)

REQUIRED_CODE_CLASSES = ('05', '24', '17', '10')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class CodeSyncResult:
    company_id: str
    class_count: int
    total_codes: int


@dataclass(frozen=True)
class CodeView:
    code: str
    label: str
    description: str | None


@dataclass(frozen=True)
class CodeClassView:
    class_code: str
    class_label: str
    codes: list[CodeView]


def parse_code_classes(response: FiscalResponse | None) -> list[EbmCodeClassData]:
    if response is None or not response.result_cd:
        raise EbmProtocolError('EBM API returned empty response')
    if not response.data:
        raise EbmProtocolError(f'EBM API error: {response.result_msg or "Unknown error"}')
    raw_classes = response.data.get('clsList') if isinstance(response.data, dict) else None
    if not isinstance(raw_classes, list):
        raise EbmProtocolError('EBM API response missing clsList array')

    try:
        classes = [EbmCodeClassData.model_validate(raw) for raw in raw_classes]
    except ValidationError as exc:
        raise EbmProtocolError(f'EBM API returned a malformed code class: {exc.error_count()} error(s)') from exc
    return [cls for cls in classes if cls.cd_cls in REQUIRED_CODE_CLASSES]


class EbmCodeSyncService:
    """Keeps the local mirror of the authority's reference-code catalog current, per company.

    A company with a SUCCESS status row is never fetched again unless forced.
    The catalog write is atomic; the status row is written afterwards and
    survives a failed catalog write.
    """

    def __init__(self, gateway: EbmGateway) -> None:
        self.gateway = gateway

    def get_status(self, db: Session, company_id: str) -> EbmCodeSyncStatus | None:
        return db.execute(
            select(EbmCodeSyncStatus).where(EbmCodeSyncStatus.company_id == company_id)
        ).scalar_one_or_none()

    def get_state(self, db: Session, company_id: str) -> CodeSyncState:
        status = self.get_status(db, company_id)
        return status.status if status else CodeSyncState.UNSYNCED

    def ensure_synced(self, db: Session, company_id: str) -> CodeSyncResult | None:
        if self.get_state(db, company_id) == CodeSyncState.SUCCESS:
            logger.info('EBM codes already synced for company %s', company_id)
            return None
        logger.info('Fetching EBM codes for company %s', company_id)
        return self.sync(db, company_id)

    def force_sync(self, db: Session, company_id: str) -> CodeSyncResult:
        logger.info('Force syncing EBM codes for company %s', company_id)
        return self.sync(db, company_id)

    def sync(self, db: Session, company_id: str) -> CodeSyncResult:
        company = db.get(Company, company_id)
        if company is None:
            raise ValueError('Company not found')

        try:
            if not company.tin:
                raise EbmConfigurationError('Company TIN not configured')
            response = self.gateway.fetch_codes(
                format_tin(company.tin),
                DEFAULT_BRANCH_CODE,
                settings.ebm_code_sync_watermark,
            )
            classes = parse_code_classes(response)
            result = self._save_catalog(db, company_id, classes)
        except Exception as exc:
            db.rollback()
            logger.exception('EBM code sync failed for company %s', company_id)
            self._record_status(db, company_id, CodeSyncState.FAILED, error_message=str(exc))
            db.commit()
            raise

        self._record_status(db, company_id, CodeSyncState.SUCCESS, total_codes=result.total_codes)
        db.commit()
        logger.info('Synced %s EBM codes in %s classes for company %s', result.total_codes, result.class_count, company_id)
        return result

    def _extend_statement_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name != 'postgresql':
            return
        timeout_ms = int(settings.ebm_code_sync_statement_timeout_ms)
        db.execute(text(f'SET LOCAL statement_timeout = {timeout_ms}'))

    def _save_catalog(self, db: Session, company_id: str, classes: list[EbmCodeClassData]) -> CodeSyncResult:
        total_codes = 0
        with db.begin_nested():
            self._extend_statement_timeout(db)
            for cls in classes:
                code_class = db.execute(
                    select(EbmCodeClass).where(EbmCodeClass.class_code == cls.cd_cls)
                ).scalar_one_or_none()
                if code_class is None:
                    code_class = EbmCodeClass(class_code=cls.cd_cls)
                    db.add(code_class)
                code_class.class_label = cls.cd_cls_nm or ''
                code_class.class_description = cls.cd_cls_desc
                code_class.use_yn = cls.use_yn or 'Y'
                db.flush()

                existing = {
                    row.code: row
                    for row in db.execute(
                        select(EbmCodeDetail).where(EbmCodeDetail.code_class_id == code_class.id)
                    ).scalars().all()
                }
                for detail in cls.dtl_list or []:
                    row = existing.get(detail.cd)
                    if row is None:
                        row = EbmCodeDetail(code_class_id=code_class.id, code=detail.cd)
                        db.add(row)
                        existing[detail.cd] = row
                    row.label = detail.cd_nm or ''
                    row.description = detail.cd_desc
                    row.use_yn = detail.use_yn or 'Y'
                    row.sort_order = detail.srt_ord
                    total_codes += 1
            db.flush()

        return CodeSyncResult(company_id=company_id, class_count=len(classes), total_codes=total_codes)

    def _record_status(
        self,
        db: Session,
        company_id: str,
        state: CodeSyncState,
        *,
        total_codes: int | None = None,
        error_message: str | None = None,
    ) -> EbmCodeSyncStatus:
        status = self.get_status(db, company_id)
        if status is None:
            try:
                with db.begin_nested():
                    status = EbmCodeSyncStatus(company_id=company_id, status=state)
                    db.add(status)
            except IntegrityError:
                # Another sync for this company wrote its status row first.
                status = self.get_status(db, company_id)
                if status is None:
                    raise

        status.status = state
        if state == CodeSyncState.SUCCESS:
            status.last_sync_at = _now()
            status.total_codes_synced = total_codes or 0
            status.error_message = None
        else:
            status.error_message = error_message
        db.flush()
        return status


def get_codes_by_class(db: Session, class_code: str) -> CodeClassView:
    code_class = db.execute(select(EbmCodeClass).where(EbmCodeClass.class_code == class_code)).scalar_one_or_none()
    if code_class is None:
        raise ValueError(f'Code class {class_code} not found')
    return _class_view(db, code_class)


def get_required_codes(db: Session) -> list[CodeClassView]:
    classes = db.execute(
        select(EbmCodeClass)
        .where(EbmCodeClass.class_code.in_(REQUIRED_CODE_CLASSES))
        .order_by(EbmCodeClass.class_code.asc())
    ).scalars().all()
    return [_class_view(db, code_class) for code_class in classes]


def _class_view(db: Session, code_class: EbmCodeClass) -> CodeClassView:
    details = db.execute(
        select(EbmCodeDetail)
        .where(
            EbmCodeDetail.code_class_id == code_class.id,
            EbmCodeDetail.use_yn == 'Y',
        )
        .order_by(EbmCodeDetail.sort_order.asc(), EbmCodeDetail.code.asc())
    ).scalars().all()
    return CodeClassView(
        class_code=code_class.class_code,
        class_label=code_class.class_label,
        codes=[CodeView(code=row.code, label=row.label, description=row.description) for row in details],
    )
