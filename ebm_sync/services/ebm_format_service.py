from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from ebm_sync.config import settings
from ebm_sync.models import Branch

DEFAULT_BRANCH_CODE = '00'
TIN_LENGTH = 9

SERVICE_KEYWORDS = (
    'service',
    'consultation',
    'repair',
    'training',
    'visit',
    'fee',
)
ITEM_TYPE_GOODS = '1'
ITEM_TYPE_SERVICE = '2'

BRANCH_CODE_RE = re.compile(r'\b(\d{2})\b')
NON_HEX_RE = re.compile(r'[^0-9a-fA-F]')

EBM_DATE_FORMAT = '%Y%m%d'
EBM_TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'


def format_tin(raw: str | None) -> str:
    cleaned = (raw or '').strip()
    if cleaned.isdigit() and cleaned.isascii():
        return cleaned.zfill(TIN_LENGTH)
    return cleaned


def branch_code_from_name(name: str | None) -> str:
    match = BRANCH_CODE_RE.search(name or '')
    return match.group(1) if match else DEFAULT_BRANCH_CODE


def resolve_branch_code(db: Session, branch_id: str | None) -> str:
    if not branch_id:
        return DEFAULT_BRANCH_CODE
    branch = db.execute(select(Branch).where(Branch.id == branch_id)).scalar_one_or_none()
    if branch is None:
        return DEFAULT_BRANCH_CODE
    return branch_code_from_name(branch.name)


def generate_reference(entity_id: str) -> int:
    """Numeric document reference (sarNo / invcNo) from the last 8 hex digits of an id.

    Deterministic for a given id; two ids sharing their trailing digits collide.
    """
    hex_digits = NON_HEX_RE.sub('', str(entity_id or ''))[-8:]
    if not hex_digits:
        return 0
    return int(hex_digits, 16)


def classify_item_type(name: str | None) -> str:
    lowered = (name or '').lower()
    if any(keyword in lowered for keyword in SERVICE_KEYWORDS):
        return ITEM_TYPE_SERVICE
    return ITEM_TYPE_GOODS


def authority_timezone() -> timezone:
    return timezone(timedelta(hours=settings.ebm_utc_offset_hours))


def to_authority_time(value: datetime) -> datetime:
    """Naive wall-clock time as the authority writes it.

    Aware datetimes are converted to the authority's offset; naive ones are
    taken to already be authority-local.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(authority_timezone()).replace(tzinfo=None)


def format_ebm_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = to_authority_time(value)
    return value.strftime(EBM_DATE_FORMAT)


def format_ebm_timestamp(value: datetime) -> str:
    return to_authority_time(value).strftime(EBM_TIMESTAMP_FORMAT)


def parse_ebm_timestamp(value: str | int) -> datetime:
    text = str(value).strip()
    if len(text) != 14 or not text.isdigit():
        raise ValueError(f'Invalid EBM timestamp: {value!r}')
    return datetime(
        year=int(text[0:4]),
        month=int(text[4:6]),
        day=int(text[6:8]),
        hour=int(text[8:10]),
        minute=int(text[10:12]),
        second=int(text[12:14]),
    )


def actor_name(user) -> str:
    return f"{user.first_name or ''} {user.last_name or ''}".strip()


def actor_id(user) -> str:
    return user.email or str(user.id)
