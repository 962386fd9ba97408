"""
Push token store.

A token string is unique across the system. Registering a token that
already exists moves it to the registering user and refreshes last_used.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cineshelf.core.logging import mask_token
from cineshelf.db.models import NotificationToken
from cineshelf.services.user_service import get_or_create_user

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def store_token(
    db: Session,
    user_id: str,
    token: str,
    platform: str = "web",
) -> NotificationToken:
    """Upsert *token* for *user_id*. Never errors on duplicates."""
    get_or_create_user(db, user_id)
    now = _utcnow()

    existing = db.query(NotificationToken).filter(NotificationToken.token == token).first()
    if existing is not None:
        if existing.user_id != user_id:
            logger.info(
                "Reassigning token %s from user %s to %s",
                mask_token(token), existing.user_id, user_id,
            )
        existing.user_id = user_id
        existing.platform = platform or existing.platform
        existing.last_used = now
        db.add(existing)
        db.commit()
        db.refresh(existing)
        return existing

    row = NotificationToken(
        user_id=user_id,
        token=token,
        platform=platform or "web",
        created_at=now,
        last_used=now,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent registration of the same token; fall back to reassigning it
        db.rollback()
        return store_token(db, user_id, token, platform)
    db.refresh(row)
    logger.info("Notification token stored for user %s", user_id)
    return row


def list_tokens(db: Session, user_id: str) -> list[str]:
    """Return every token currently owned by *user_id*, oldest first."""
    rows = (
        db.query(NotificationToken.token)
        .filter(NotificationToken.user_id == user_id)
        .order_by(NotificationToken.created_at.asc())
        .all()
    )
    return [row.token for row in rows]


def remove_token(db: Session, user_id: str, token: str) -> bool:
    """Delete the (user_id, token) pairing. Returns False when it was absent."""
    count = (
        db.query(NotificationToken)
        .filter(
            NotificationToken.user_id == user_id,
            NotificationToken.token == token,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    if count:
        logger.info("Removed notification token for user %s", user_id)
    return count > 0


def prune_invalid_token(db: Session, token: str) -> bool:
    """Delete *token* regardless of owner (provider reported it invalid)."""
    count = (
        db.query(NotificationToken)
        .filter(NotificationToken.token == token)
        .delete(synchronize_session=False)
    )
    db.commit()
    if count:
        logger.info("Removed invalid token: %s", mask_token(token))
    return count > 0


def touch_tokens(db: Session, tokens: list[str]) -> None:
    """Refresh last_used for tokens that just received a push."""
    if not tokens:
        return
    (
        db.query(NotificationToken)
        .filter(NotificationToken.token.in_(tokens))
        .update({NotificationToken.last_used: _utcnow()}, synchronize_session=False)
    )
    db.commit()


def list_token_owner_ids(db: Session) -> list[str]:
    """Distinct user ids that own at least one token (bulk audience)."""
    rows = (
        db.query(NotificationToken.user_id)
        .distinct()
        .order_by(NotificationToken.user_id.asc())
        .all()
    )
    return [row.user_id for row in rows]
