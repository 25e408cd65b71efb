from __future__ import annotations

import argparse
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from ebm_sync.db import SessionLocal
from ebm_sync.logging_config import configure_logging
from ebm_sync.models import Company
from ebm_sync.realtime import HttpRelayChannel
from ebm_sync.services.ebm_gateway import EbmGateway
from ebm_sync.services.ebm_notice_service import EbmNoticeService, NoticeSyncResult

logger = logging.getLogger(__name__)


@dataclass
class NoticeSyncSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[NoticeSyncResult] = field(default_factory=list)


def active_company_ids(db: Session) -> list[str]:
    return db.execute(
        select(Company.id).where(Company.active.is_(True)).order_by(Company.name.asc(), Company.id.asc())
    ).scalars().all()


def run_notice_sync(
    db: Session,
    service: EbmNoticeService,
    company_ids: Iterable[str] | None = None,
) -> NoticeSyncSummary:
    """Poll notices for each company in turn; one company failing never stops the rest."""
    targets = list(company_ids) if company_ids is not None else active_company_ids(db)
    logger.info('Starting EBM notice sync for %s companies', len(targets))

    summary = NoticeSyncSummary()
    for company_id in targets:
        summary.processed += 1
        try:
            result = service.sync_notices(db, company_id)
        except Exception:
            db.rollback()
            logger.exception('EBM notice sync failed for company %s', company_id)
            summary.failed += 1
            continue
        summary.succeeded += 1
        summary.results.append(result)

    logger.info(
        'EBM notice sync complete: processed=%s, succeeded=%s, failed=%s',
        summary.processed,
        summary.succeeded,
        summary.failed,
    )
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description='Fetch EBM notices and notify active company users.')
    parser.add_argument('--company-id', action='append', dest='company_ids', help='Restrict the sync to this company (repeatable).')
    args = parser.parse_args()

    configure_logging()
    channel = HttpRelayChannel.from_settings()
    if channel is None:
        logger.warning('REALTIME_RELAY_URL or REALTIME_RELAY_TOKEN not set; notices will be left for a run that can broadcast them')
    service = EbmNoticeService(EbmGateway.from_settings(), channel)
    with SessionLocal() as db:
        summary = run_notice_sync(db, service, args.company_ids)

    notices = sum(len(result.processed) for result in summary.results)
    print(
        f'EBM notice sync complete: companies={summary.processed}, succeeded={summary.succeeded}, '
        f'failed={summary.failed}, notices={notices}'
    )


if __name__ == '__main__':
    main()
