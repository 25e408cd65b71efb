from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ebm_sync.models import Notification, NotificationType


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    type: NotificationType = NotificationType.INFO,
    action_url: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    company_id: str | None = None,
    metadata: dict | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        company_id=company_id,
        title=title,
        message=message,
        type=NotificationType(type).value,
        action_url=action_url,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=dict(metadata or {}),
    )
    db.add(notification)
    db.flush()
    return notification


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_notification(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'userId': notification.user_id,
        'title': notification.title,
        'message': notification.message,
        'type': notification.type,
        'actionUrl': notification.action_url,
        'entityType': notification.entity_type,
        'entityId': notification.entity_id,
        'metadata': notification.meta or None,
        'isRead': notification.is_read,
        'createdAt': _iso(notification.created_at),
    }


def list_user_notifications(db: Session, user_id: str, *, limit: int = 50, offset: int = 0) -> list[Notification]:
    return db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()


def count_unread(db: Session, user_id: str) -> int:
    return db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    ).scalar_one()


def mark_as_read(db: Session, *, notification_id: str, user_id: str) -> bool:
    result = db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
    )
    return result.rowcount > 0


def mark_all_as_read(db: Session, user_id: str) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount


def delete_notification(db: Session, *, notification_id: str, user_id: str) -> bool:
    result = db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    return result.rowcount > 0
