from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ebm_sync.config import settings
from ebm_sync.models import (
    EBM_NOTICE_ENTITY_TYPE,
    Company,
    CompanyUser,
    EbmProcessedNotice,
    Notification,
    NotificationType,
)
from ebm_sync.realtime import NOTIFICATION_EVENT, RealtimeChannel
from ebm_sync.schemas import EbmNotice
from ebm_sync.services.ebm_format_service import (
    DEFAULT_BRANCH_CODE,
    format_ebm_timestamp,
    format_tin,
    parse_ebm_timestamp,
    to_authority_time,
)
from ebm_sync.services.ebm_gateway import EbmGateway
from ebm_sync.services.notification_service import create_notification, serialize_notification

logger = logging.getLogger(__name__)

NOTICE_SOURCE = 'EBM'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class DeliveryOutcome:
    user_id: str
    notice_no: str
    delivered: bool
    notification_id: str | None = None
    error: str | None = None


@dataclass
class NoticeSyncResult:
    company_id: str
    watermark: str | None = None
    skipped_reason: str | None = None
    fetched: int = 0
    processed: list[str] = field(default_factory=list)
    already_processed: list[str] = field(default_factory=list)
    deliveries: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def failed_deliveries(self) -> list[DeliveryOutcome]:
        return [outcome for outcome in self.deliveries if not outcome.delivered]


class EbmNoticeService:
    """Relays authority notices to every active user of a company, once per notice."""

    def __init__(self, gateway: EbmGateway, channel: RealtimeChannel | None) -> None:
        self.gateway = gateway
        self.channel = channel

    def sync_notices(self, db: Session, company_id: str, *, now: datetime | None = None) -> NoticeSyncResult:
        current_time = now or _now()
        result = NoticeSyncResult(company_id=company_id)

        company = db.get(Company, company_id)
        if company is None or not company.tin:
            logger.warning('Company %s has no TIN configured; skipping EBM notice sync', company_id)
            result.skipped_reason = 'missing_tin'
            return result

        if self.channel is None:
            logger.warning('Realtime channel not configured; skipping EBM notice sync for company %s', company_id)
            result.skipped_reason = 'missing_channel'
            return result

        result.watermark = format_ebm_timestamp(self.last_notice_date(db, company_id, now=current_time))
        response = self.gateway.fetch_notices(format_tin(company.tin), DEFAULT_BRANCH_CODE, result.watermark)

        notice_list = response.data.get('noticeList') if isinstance(response.data, dict) else None
        if not response.is_success or not notice_list:
            logger.info('No new EBM notices for %s: %s', company.name, response.result_msg)
            result.skipped_reason = 'no_new_notices'
            return result

        result.fetched = len(notice_list)
        for raw_notice in notice_list:
            try:
                notice = EbmNotice.model_validate(raw_notice)
            except ValidationError:
                logger.warning('Ignoring malformed EBM notice for %s: %r', company.name, raw_notice)
                continue

            notice_no = str(notice.notice_no)
            if not self._claim_notice(db, company_id, notice):
                logger.info('EBM notice #%s already processed for %s', notice_no, company.name)
                result.already_processed.append(notice_no)
                continue

            result.deliveries.extend(self._distribute(db, company_id, notice, now=current_time))
            result.processed.append(notice_no)
            db.commit()

        logger.info('Processed %s new EBM notices for %s', len(result.processed), company.name)
        return result

    def last_notice_date(self, db: Session, company_id: str, *, now: datetime) -> datetime:
        """Watermark for the next poll, as naive authority-local time."""
        latest = db.execute(
            select(Notification)
            .where(
                Notification.entity_type == EBM_NOTICE_ENTITY_TYPE,
                Notification.company_id == company_id,
            )
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(1)
        ).scalar_one_or_none()

        reg_dt = (latest.meta or {}).get('regDt') if latest else None
        if reg_dt:
            try:
                return parse_ebm_timestamp(reg_dt)
            except ValueError:
                logger.warning('Unreadable regDt %r on notification %s; using default window', reg_dt, latest.id)
        return to_authority_time(now) - timedelta(days=settings.ebm_notice_lookback_days)

    def is_notice_processed(self, db: Session, company_id: str, notice_no: str) -> bool:
        existing = db.execute(
            select(Notification.id)
            .where(
                Notification.entity_type == EBM_NOTICE_ENTITY_TYPE,
                Notification.entity_id == notice_no,
                Notification.company_id == company_id,
            )
            .limit(1)
        ).first()
        if existing is not None:
            return True
        claimed = db.execute(
            select(EbmProcessedNotice.id)
            .where(
                EbmProcessedNotice.company_id == company_id,
                EbmProcessedNotice.notice_no == notice_no,
            )
            .limit(1)
        ).first()
        return claimed is not None

    def _claim_notice(self, db: Session, company_id: str, notice: EbmNotice) -> bool:
        notice_no = str(notice.notice_no)
        if self.is_notice_processed(db, company_id, notice_no):
            return False
        try:
            with db.begin_nested():
                db.add(EbmProcessedNotice(company_id=company_id, notice_no=notice_no, reg_dt=notice.reg_dt))
        except IntegrityError:
            # A concurrent sync claimed the same notice between the check and the insert.
            return False
        return True

    def _active_user_ids(self, db: Session, company_id: str) -> list[str]:
        return db.execute(
            select(CompanyUser.user_id)
            .where(
                CompanyUser.company_id == company_id,
                CompanyUser.active.is_(True),
            )
            .order_by(CompanyUser.created_at.asc(), CompanyUser.id.asc())
        ).scalars().all()

    def _distribute(self, db: Session, company_id: str, notice: EbmNotice, *, now: datetime) -> list[DeliveryOutcome]:
        notice_no = str(notice.notice_no)
        user_ids = self._active_user_ids(db, company_id)
        if not user_ids:
            logger.info('No active users found for company %s', company_id)
            return []

        outcomes: list[DeliveryOutcome] = []
        for user_id in user_ids:
            try:
                with db.begin_nested():
                    notification = create_notification(
                        db,
                        user_id=user_id,
                        title=notice.title or '',
                        message=notice.cont or '',
                        type=NotificationType.WARNING,
                        action_url=notice.dtl_url,
                        entity_type=EBM_NOTICE_ENTITY_TYPE,
                        entity_id=notice_no,
                        company_id=company_id,
                        metadata={
                            'source': NOTICE_SOURCE,
                            'noticeNo': notice.notice_no,
                            'regrNm': notice.regr_nm,
                            'regDt': notice.reg_dt,
                            'companyId': company_id,
                            'processedAt': now.isoformat(),
                        },
                    )
            except Exception as exc:
                logger.exception('Failed to create EBM notice notification for user %s', user_id)
                outcomes.append(DeliveryOutcome(user_id=user_id, notice_no=notice_no, delivered=False, error=str(exc)))
                continue

            outcomes.append(self._emit(user_id, notice_no, notification))

        delivered = sum(1 for outcome in outcomes if outcome.delivered)
        logger.info('Distributed EBM notice #%s to %s of %s users', notice_no, delivered, len(user_ids))
        return outcomes

    def _emit(self, user_id: str, notice_no: str, notification: Notification) -> DeliveryOutcome:
        try:
            self.channel.emit(user_id, NOTIFICATION_EVENT, serialize_notification(notification))
        except Exception as exc:
            logger.exception('Failed to emit EBM notice notification to user %s', user_id)
            return DeliveryOutcome(
                user_id=user_id,
                notice_no=notice_no,
                delivered=False,
                notification_id=notification.id,
                error=str(exc),
            )
        return DeliveryOutcome(user_id=user_id, notice_no=notice_no, delivered=True, notification_id=notification.id)
