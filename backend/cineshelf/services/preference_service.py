"""
Notification preference store.

Only categories a user has explicitly set are persisted; reads merge them
over DEFAULT_PREFERENCES so a missing record means "everything on".
"""
import logging
from contextlib import suppress
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cineshelf.db.models import NotificationPreference
from cineshelf.services.user_service import get_or_create_user

logger = logging.getLogger(__name__)

MOVIE_REVIEWS = "movieReviews"
FOLLOWER_GAINED = "followerGained"
FOLLOWED_USER_REVIEWS = "followedUserReviews"
RECOMMENDATIONS = "recommendations"
GENERAL = "general"

DEFAULT_PREFERENCES: dict[str, bool] = {
    MOVIE_REVIEWS: True,
    FOLLOWER_GAINED: True,
    FOLLOWED_USER_REVIEWS: True,
    RECOMMENDATIONS: True,
    GENERAL: True,
}


class UnknownPreferenceCategoryError(Exception):
    """Raised when an update names a category that does not exist."""

    def __init__(self, categories: list[str]) -> None:
        self.categories = categories
        super().__init__(f"Unknown notification categories: {', '.join(categories)}")


def _stored(db: Session, user_id: str) -> dict[str, bool]:
    row = (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .first()
    )
    if row is None or not isinstance(row.preferences, dict):
        return {}
    return {
        key: bool(value)
        for key, value in row.preferences.items()
        if key in DEFAULT_PREFERENCES
    }


def get_preferences(db: Session, user_id: str) -> dict[str, bool]:
    """Stored values merged over the defaults."""
    return {**DEFAULT_PREFERENCES, **_stored(db, user_id)}


def get_explicit_preference(db: Session, user_id: str, category: str) -> bool | None:
    """The stored value for *category*, or None when the user never set it."""
    return _stored(db, user_id).get(category)


def set_preferences(
    db: Session,
    user_id: str,
    partial: Mapping[str, bool],
) -> dict[str, bool]:
    """Merge *partial* into the stored record and return the effective set."""
    unknown = sorted(key for key in partial if key not in DEFAULT_PREFERENCES)
    if unknown:
        raise UnknownPreferenceCategoryError(unknown)

    get_or_create_user(db, user_id)
    row = (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .first()
    )
    updates = {key: bool(value) for key, value in partial.items()}

    if row is None:
        row = NotificationPreference(user_id=user_id, preferences=updates)
    else:
        # Reassign a new dict so the JSON column is flagged dirty
        row.preferences = {**(row.preferences or {}), **updates}
    db.add(row)
    db.commit()

    logger.info("Updated notification preferences for user %s", user_id)
    return get_preferences(db, user_id)


def is_enabled(db: Session, user_id: str, category: str) -> bool:
    """
    Whether *user_id* wants notifications of *category*.

    Fails open: a store error is logged and treated as enabled.
    """
    try:
        return get_preferences(db, user_id).get(category, True)
    except Exception:
        logger.exception("Error checking notification preference %s for user %s", category, user_id)
        with suppress(SQLAlchemyError):
            db.rollback()
        return True
