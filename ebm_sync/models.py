from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class CodeSyncState(str, Enum):
    UNSYNCED = 'UNSYNCED'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class NotificationType(str, Enum):
    INFO = 'info'
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


EBM_NOTICE_ENTITY_TYPE = 'EBM_NOTICE'


class Company(Base):
    __tablename__ = 'companies'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    tin: Mapped[str | None] = mapped_column(Text)
    sector: Mapped[str | None] = mapped_column(Text)
    district: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Branch(Base):
    __tablename__ = 'branches'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    first_name: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    last_name: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class CompanyUser(Base):
    __tablename__ = 'company_users'
    __table_args__ = (
        UniqueConstraint('company_id', 'user_id', name='company_users_company_user_uniq'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class EbmCodeClass(Base):
    __tablename__ = 'ebm_code_classes'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    class_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    class_label: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    class_description: Mapped[str | None] = mapped_column(Text)
    use_yn: Mapped[str] = mapped_column(String(1), nullable=False, default='Y', server_default='Y')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )

    details: Mapped[list[EbmCodeDetail]] = relationship(
        back_populates='code_class',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )


class EbmCodeDetail(Base):
    __tablename__ = 'ebm_code_details'
    __table_args__ = (
        UniqueConstraint('code_class_id', 'code', name='ebm_code_details_class_code_uniq'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    code_class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('ebm_code_classes.id', ondelete='CASCADE'), nullable=False
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    description: Mapped[str | None] = mapped_column(Text)
    use_yn: Mapped[str] = mapped_column(String(1), nullable=False, default='Y', server_default='Y')
    sort_order: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )

    code_class: Mapped[EbmCodeClass] = relationship(back_populates='details')


class EbmCodeSyncStatus(Base):
    __tablename__ = 'ebm_code_sync_status'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, unique=True
    )
    status: Mapped[CodeSyncState] = mapped_column(SQLEnum(CodeSyncState, name='ebm_code_sync_state'), nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_codes_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('companies.id', ondelete='SET NULL'))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=NotificationType.INFO.value, server_default='info')
    action_url: Mapped[str | None] = mapped_column(Text)
    entity_type: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class EbmProcessedNotice(Base):
    __tablename__ = 'ebm_processed_notices'
    __table_args__ = (
        UniqueConstraint('company_id', 'notice_no', name='ebm_processed_notices_company_notice_uniq'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    notice_no: Mapped[str] = mapped_column(String(64), nullable=False)
    reg_dt: Mapped[str | None] = mapped_column(String(14))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
