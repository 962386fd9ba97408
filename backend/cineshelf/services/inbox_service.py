"""
In-app inbox: per-user notification records, the guaranteed delivery channel.
"""
from datetime import datetime

from sqlalchemy.orm import Session

from cineshelf.db.models import InboxNotification
from cineshelf.services.user_service import get_or_create_user


def serialize_notification(row: InboxNotification) -> dict:
    """Wire shape shared by GET /notifications and the live stream."""
    created_at: datetime = row.created_at
    return {
        "id": row.id,
        "userId": row.user_id,
        "type": row.type,
        "title": row.title,
        "body": row.body,
        "data": dict(row.data or {}),
        "imageUrl": row.image_url,
        "createdAt": created_at.isoformat() if created_at else None,
        "isRead": bool(row.is_read),
    }


def create_notification(
    db: Session,
    user_id: str,
    type: str,
    title: str,
    body: str,
    data: dict[str, str] | None = None,
    image_url: str | None = None,
) -> InboxNotification:
    """Append one unread notification to *user_id*'s inbox."""
    get_or_create_user(db, user_id)
    row = InboxNotification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data=dict(data or {}),
        image_url=image_url,
        is_read=False,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_notifications(db: Session, user_id: str, limit: int = 50) -> list[InboxNotification]:
    """Latest *limit* notifications, newest first."""
    return (
        db.query(InboxNotification)
        .filter(InboxNotification.user_id == user_id)
        .order_by(InboxNotification.created_at.desc(), InboxNotification.id.desc())
        .limit(limit)
        .all()
    )


def list_notifications_after(
    db: Session,
    user_id: str,
    last_seen_id: str,
    limit: int = 200,
) -> list[InboxNotification]:
    """
    Notifications created after *last_seen_id*, oldest first.

    Used to backfill a reconnecting stream. An unknown id yields nothing;
    the client reloads the full inbox in that case anyway.
    """
    anchor = (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.id == last_seen_id,
        )
        .first()
    )
    if anchor is None:
        return []
    return (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.created_at > anchor.created_at,
        )
        .order_by(InboxNotification.created_at.asc())
        .limit(limit)
        .all()
    )


def get_notifications_by_id(
    db: Session,
    user_id: str,
    notification_ids: list[str],
) -> list[InboxNotification]:
    """The user's records among *notification_ids*; other ids are skipped."""
    ids = list(dict.fromkeys(notification_ids))
    if not ids:
        return []
    return (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.id.in_(ids),
        )
        .all()
    )


def count_unread(db: Session, user_id: str) -> int:
    return (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.is_read.is_(False),
        )
        .count()
    )


def mark_as_read(db: Session, user_id: str, notification_ids: list[str]) -> int:
    """
    Flag the given notifications as read in one transaction.

    Ids that belong to another user or do not exist are ignored.
    Returns how many rows were updated.
    """
    ids = list(dict.fromkeys(notification_ids))
    if not ids:
        return 0
    count = (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.id.in_(ids),
        )
        .update({InboxNotification.is_read: True}, synchronize_session="fetch")
    )
    db.commit()
    return count


def delete_notification(db: Session, user_id: str, notification_id: str) -> bool:
    """Remove one notification at the owner's request. Returns True when deleted."""
    count = (
        db.query(InboxNotification)
        .filter(
            InboxNotification.user_id == user_id,
            InboxNotification.id == notification_id,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return count > 0
