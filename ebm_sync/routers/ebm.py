from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ebm_sync.auth import Principal, Role, assert_company_scope, get_current_principal, require_company, require_role
from ebm_sync.db import get_db
from ebm_sync.dependencies import get_code_sync_service, get_notice_service
from ebm_sync.errors import EbmConfigurationError, EbmProtocolError
from ebm_sync.models import CodeSyncState
from ebm_sync.services.ebm_code_sync_service import EbmCodeSyncService, get_codes_by_class, get_required_codes
from ebm_sync.services.ebm_notice_service import EbmNoticeService, NoticeSyncResult

router = APIRouter(prefix='/ebm', tags=['ebm'])
admin_access = require_role(Role.ADMIN, Role.COMPANY_ADMIN)


class NoticeSyncRequest(BaseModel):
    company_id: str


def _notice_result(result: NoticeSyncResult) -> dict:
    return {
        'companyId': result.company_id,
        'watermark': result.watermark,
        'skippedReason': result.skipped_reason,
        'fetched': result.fetched,
        'processed': result.processed,
        'alreadyProcessed': result.already_processed,
        'deliveries': [asdict(outcome) for outcome in result.deliveries],
    }


@router.post('/notices/sync')
def sync_notices(
    body: NoticeSyncRequest,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    service: EbmNoticeService = Depends(get_notice_service),
):
    assert_company_scope(principal, body.company_id)
    result = service.sync_notices(db, body.company_id)
    return {'success': True, 'message': 'EBM notices sync completed', 'result': _notice_result(result)}


@router.get('/notices/refresh')
def refresh_notices(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    service: EbmNoticeService = Depends(get_notice_service),
):
    company_id = require_company(principal)
    result = service.sync_notices(db, company_id)
    return {'success': True, 'message': 'EBM notices refreshed', 'result': _notice_result(result)}


@router.get('/codes')
def list_required_codes(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'success': True, 'data': [asdict(view) for view in get_required_codes(db)]}


@router.get('/codes/status')
def code_sync_status(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    service: EbmCodeSyncService = Depends(get_code_sync_service),
):
    company_id = require_company(principal)
    status = service.get_status(db, company_id)
    if status is None:
        return {'companyId': company_id, 'status': CodeSyncState.UNSYNCED.value}
    return {
        'companyId': company_id,
        'status': status.status.value,
        'lastSyncAt': status.last_sync_at.isoformat() if status.last_sync_at else None,
        'totalCodesSynced': status.total_codes_synced,
        'errorMessage': status.error_message,
    }


@router.get('/codes/{class_code}')
def codes_by_class(
    class_code: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        view = get_codes_by_class(db, class_code)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {'success': True, 'data': asdict(view)}


@router.post('/codes/sync')
def force_code_sync(
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    service: EbmCodeSyncService = Depends(get_code_sync_service),
):
    company_id = require_company(principal)
    try:
        result = service.force_sync(db, company_id)
    except EbmProtocolError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except EbmConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        'success': True,
        'message': 'EBM codes synced',
        'classCount': result.class_count,
        'totalCodes': result.total_codes,
    }
