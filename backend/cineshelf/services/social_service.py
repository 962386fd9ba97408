"""
Social business logic — the follow graph.

A follow edge and both denormalised counters (follower's following_count,
target's followers_count) are written in one transaction: they commit
together or not at all.
"""
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cineshelf.db.models import Follow, User
from cineshelf.services.user_service import get_user_or_raise

logger = logging.getLogger(__name__)


class SelfFollowError(Exception):
    """Raised when a user tries to follow themselves."""


class AlreadyFollowingError(Exception):
    """Raised when a follow relationship already exists."""


class NotFollowingError(Exception):
    """Raised when unfollowing a user that is not followed."""


class FollowWriteError(Exception):
    """Raised when the follow transaction fails; nothing was changed."""


def _bump_counters(db: Session, follower_id: str, following_id: str, delta: int) -> None:
    db.query(User).filter(User.id == follower_id).update(
        {User.following_count: User.following_count + delta}
    )
    db.query(User).filter(User.id == following_id).update(
        {User.followers_count: User.followers_count + delta}
    )


def _existing_follow(db: Session, follower_id: str, following_id: str) -> Follow | None:
    return (
        db.query(Follow)
        .filter(
            Follow.follower_id == follower_id,
            Follow.following_id == following_id,
        )
        .first()
    )


def create_follow(db: Session, follower_id: str, following_id: str) -> dict:
    """Create a follow edge and bump both counters atomically."""
    if follower_id == following_id:
        raise SelfFollowError("You cannot follow yourself")

    get_user_or_raise(db, follower_id)
    target = get_user_or_raise(db, following_id)

    if _existing_follow(db, follower_id, following_id) is not None:
        raise AlreadyFollowingError("You already follow this user")

    follow = Follow(follower_id=follower_id, following_id=following_id)
    try:
        db.add(follow)
        _bump_counters(db, follower_id, following_id, 1)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyFollowingError("You already follow this user") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error in follow transaction %s → %s", follower_id, following_id)
        raise FollowWriteError("Could not follow user") from exc

    db.refresh(follow)
    return {
        "follower_id": follow.follower_id,
        "following_id": follow.following_id,
        "following_name": target.public_name,
        "created_at": follow.created_at,
    }


def delete_follow(db: Session, follower_id: str, following_id: str) -> None:
    """Remove a follow edge and decrement both counters atomically."""
    follow = _existing_follow(db, follower_id, following_id)
    if follow is None:
        raise NotFollowingError("You do not follow this user")

    try:
        db.delete(follow)
        _bump_counters(db, follower_id, following_id, -1)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error in unfollow transaction %s → %s", follower_id, following_id)
        raise FollowWriteError("Could not unfollow user") from exc


def list_follower_ids(db: Session, user_id: str) -> list[str]:
    """Ids of users who follow *user_id*, oldest follow first."""
    rows = (
        db.query(Follow.follower_id)
        .filter(Follow.following_id == user_id)
        .order_by(Follow.created_at.asc())
        .all()
    )
    return [row.follower_id for row in rows]


def list_following(db: Session, user_id: str) -> list[dict]:
    """Return users this user follows."""
    rows = (
        db.query(Follow, User)
        .join(User, Follow.following_id == User.id)
        .filter(Follow.follower_id == user_id)
        .order_by(Follow.created_at.desc())
        .all()
    )
    return [
        {
            "user_id": target.id,
            "display_name": target.public_name,
            "avatar_url": target.avatar_url,
            "followed_at": follow.created_at,
        }
        for follow, target in rows
    ]


def list_followers(db: Session, user_id: str) -> list[dict]:
    """Return users who follow this user."""
    rows = (
        db.query(Follow, User)
        .join(User, Follow.follower_id == User.id)
        .filter(Follow.following_id == user_id)
        .order_by(Follow.created_at.desc())
        .all()
    )
    return [
        {
            "user_id": follower.id,
            "display_name": follower.public_name,
            "avatar_url": follower.avatar_url,
            "followed_at": follow.created_at,
        }
        for follow, follower in rows
    ]


def get_profile_summary(db: Session, viewer_id: str, target_id: str) -> dict:
    """Return profile header details and follow-state."""
    target = get_user_or_raise(db, target_id)
    is_following = _existing_follow(db, viewer_id, target_id) is not None
    is_followed_by = _existing_follow(db, target_id, viewer_id) is not None

    return {
        "user_id": target.id,
        "username": target.username,
        "display_name": target.public_name,
        "bio": target.bio,
        "avatar_url": target.avatar_url,
        "followers_count": target.followers_count,
        "following_count": target.following_count,
        "is_self": viewer_id == target_id,
        "is_following": is_following,
        "is_followed_by": is_followed_by,
    }
