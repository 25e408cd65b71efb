from __future__ import annotations

import argparse
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ebm_sync.db import SessionLocal
from ebm_sync.logging_config import configure_logging
from ebm_sync.services.ebm_code_sync_service import CodeSyncResult, EbmCodeSyncService
from ebm_sync.services.ebm_gateway import EbmGateway
from ebm_sync.sync_ebm_notices import active_company_ids

logger = logging.getLogger(__name__)


@dataclass
class CodeSyncSummary:
    processed: int = 0
    synced: int = 0
    already_synced: int = 0
    failed: int = 0
    results: list[CodeSyncResult] = field(default_factory=list)


def run_code_sync(
    db: Session,
    service: EbmCodeSyncService,
    company_ids: Iterable[str] | None = None,
    *,
    force: bool = False,
) -> CodeSyncSummary:
    targets = list(company_ids) if company_ids is not None else active_company_ids(db)
    summary = CodeSyncSummary()
    for company_id in targets:
        summary.processed += 1
        try:
            result = service.force_sync(db, company_id) if force else service.ensure_synced(db, company_id)
        except Exception:
            # The service already recorded FAILED and logged the cause.
            db.rollback()
            summary.failed += 1
            continue
        if result is None:
            summary.already_synced += 1
        else:
            summary.synced += 1
            summary.results.append(result)

    logger.info(
        'EBM code sync complete: processed=%s, synced=%s, already_synced=%s, failed=%s',
        summary.processed,
        summary.synced,
        summary.already_synced,
        summary.failed,
    )
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description='Mirror the EBM reference-code catalog for active companies.')
    parser.add_argument('--company-id', action='append', dest='company_ids', help='Restrict the sync to this company (repeatable).')
    parser.add_argument('--force', action='store_true', help='Refetch even when the last sync succeeded.')
    args = parser.parse_args()

    configure_logging()
    service = EbmCodeSyncService(EbmGateway.from_settings())
    with SessionLocal() as db:
        summary = run_code_sync(db, service, args.company_ids, force=args.force)

    codes = sum(result.total_codes for result in summary.results)
    print(
        f'EBM code sync complete: companies={summary.processed}, synced={summary.synced}, '
        f'already_synced={summary.already_synced}, failed={summary.failed}, codes={codes}'
    )


if __name__ == '__main__':
    main()
