"""
Social events → notifications.

Each notify_* function resolves the audience for one event type, builds the
payload and hands it to the dispatcher. They never raise: a notification
failure must not fail the action that caused it (a review, a follow).
"""
import logging

from sqlalchemy.orm import Session

from cineshelf.db.models import NotificationTypeEnum, WatchlistEntry
from cineshelf.services.dispatcher import DispatchResult, NotificationDispatcher, NotificationPayload
from cineshelf.services.preference_service import (
    FOLLOWER_GAINED,
    MOVIE_REVIEWS,
    get_explicit_preference,
    is_enabled,
)
from cineshelf.services.token_service import list_token_owner_ids

logger = logging.getLogger(__name__)


# ── Payload builders ──────────────────────────────────────────────────────────

def build_follower_gained_payload(follower_id: str, follower_name: str) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationTypeEnum.FOLLOWER_GAINED.value,
        title="New Follower",
        body=f"{follower_name} started following you",
        data={"followerId": follower_id, "followerName": follower_name},
    )


def build_movie_review_payload(
    reviewer_id: str,
    movie_id: str,
    movie_title: str,
    reviewer_name: str,
    rating: int,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationTypeEnum.MOVIE_REVIEW.value,
        title=f"New Review: {movie_title}",
        body=f'{reviewer_name} rated "{movie_title}" {rating}/10',
        data={"movieId": movie_id, "reviewerId": reviewer_id, "rating": str(rating)},
    )


def build_followed_user_review_payload(
    reviewer_id: str,
    reviewer_name: str,
    movie_id: str,
    movie_title: str,
    rating: int,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationTypeEnum.FOLLOWED_USER_REVIEW.value,
        title=f"{reviewer_name} reviewed {movie_title}",
        body=f'{reviewer_name} rated "{movie_title}" {rating}/10',
        data={
            "reviewerId": reviewer_id,
            "reviewerName": reviewer_name,
            "movieId": movie_id,
            "movieTitle": movie_title,
            "rating": str(rating),
        },
    )


def build_recommendation_payload(
    recommender_id: str,
    recommender_name: str,
    movie_id: str,
    movie_title: str,
    reason: str | None = None,
) -> NotificationPayload:
    reason = (reason or "").strip()
    if reason:
        body = f'{recommender_name} thinks you\'ll love "{movie_title}" - {reason}'
    else:
        body = f'{recommender_name} recommended "{movie_title}" to you'
    return NotificationPayload(
        type=NotificationTypeEnum.RECOMMENDATION.value,
        title="Movie Recommendation",
        body=body,
        data={
            "recommenderId": recommender_id,
            "recommenderName": recommender_name,
            "movieId": movie_id,
            "movieTitle": movie_title,
            "reason": reason,
        },
    )


def build_general_payload(
    title: str,
    body: str,
    data: dict[str, str] | None = None,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationTypeEnum.GENERAL.value,
        title=title,
        body=body,
        data={str(k): str(v) for k, v in (data or {}).items()},
    )


# ── Audience resolution ──────────────────────────────────────────────────────

def watchlist_audience(db: Session, movie_id: str, exclude_user_id: str) -> list[str]:
    """Distinct users with *movie_id* on their watchlist, minus *exclude_user_id*."""
    rows = (
        db.query(WatchlistEntry.user_id)
        .filter(
            WatchlistEntry.movie_id == movie_id,
            WatchlistEntry.user_id != exclude_user_id,
        )
        .distinct()
        .order_by(WatchlistEntry.user_id.asc())
        .all()
    )
    return [row.user_id for row in rows]


# ── Event mappers ─────────────────────────────────────────────────────────────

async def notify_follower_gained(
    db: Session,
    dispatcher: NotificationDispatcher,
    follower_id: str,
    follower_name: str,
    followed_user_id: str,
) -> bool:
    """Tell *followed_user_id* they have a new follower. Returns whether anything was dispatched."""
    try:
        # Delivered unless the user explicitly switched this category off
        if get_explicit_preference(db, followed_user_id, FOLLOWER_GAINED) is False:
            logger.info("User %s opted out of follower notifications", followed_user_id)
            return False
    except Exception:
        logger.exception("Preference lookup failed for user %s; delivering anyway", followed_user_id)
        db.rollback()

    payload = build_follower_gained_payload(follower_id, follower_name)
    try:
        pushed = await dispatcher.dispatch_to_user(followed_user_id, payload)
    except Exception:
        logger.exception("Error sending follower gained notification to %s", followed_user_id)
        db.rollback()
        return False

    if pushed:
        logger.info("Sent push and stored in-app notification for user: %s", followed_user_id)
    else:
        logger.info("Stored in-app notification for user %s (no push notification sent)", followed_user_id)
    return True


async def notify_movie_review(
    db: Session,
    dispatcher: NotificationDispatcher,
    reviewer_id: str,
    movie_id: str,
    movie_title: str,
    reviewer_name: str,
    rating: int,
) -> int:
    """
    Notify everyone watching *movie_id* (except the reviewer) who has
    movieReviews enabled. Returns the number of users dispatched to.
    """
    try:
        candidates = watchlist_audience(db, movie_id, reviewer_id)
        audience = [uid for uid in candidates if is_enabled(db, uid, MOVIE_REVIEWS)]
        if not audience:
            return 0

        payload = build_movie_review_payload(reviewer_id, movie_id, movie_title, reviewer_name, rating)
        result = await dispatcher.dispatch_to_users(audience, payload)
    except Exception:
        logger.exception("Error sending movie review notification for movie %s", movie_id)
        db.rollback()
        return 0

    logger.info(
        "Movie review notification stored for %d users. Push: %d successful, %d failed.",
        len(audience), result.succeeded, result.failed,
    )
    return len(audience)


async def notify_followed_user_review(
    dispatcher: NotificationDispatcher,
    reviewer_id: str,
    reviewer_name: str,
    movie_id: str,
    movie_title: str,
    rating: int,
    follower_ids: list[str],
) -> int:
    """Notify the caller-resolved followers of a reviewer. Returns the audience size."""
    audience = [uid for uid in dict.fromkeys(follower_ids) if uid and uid != reviewer_id]
    if not audience:
        return 0

    payload = build_followed_user_review_payload(reviewer_id, reviewer_name, movie_id, movie_title, rating)
    try:
        result = await dispatcher.dispatch_to_users(audience, payload)
    except Exception:
        logger.exception("Error sending followed user review notification for %s", reviewer_id)
        dispatcher.db.rollback()
        return 0

    logger.info(
        "Followed user review notification stored for %d followers. Push: %d successful, %d failed.",
        len(audience), result.succeeded, result.failed,
    )
    return len(audience)


async def notify_recommendation(
    dispatcher: NotificationDispatcher,
    recommender_id: str,
    recommender_name: str,
    recipient_id: str,
    movie_id: str,
    movie_title: str,
    reason: str | None = None,
) -> bool:
    payload = build_recommendation_payload(recommender_id, recommender_name, movie_id, movie_title, reason)
    try:
        await dispatcher.dispatch_to_user(recipient_id, payload)
    except Exception:
        logger.exception("Error sending movie recommendation notification to %s", recipient_id)
        dispatcher.db.rollback()
        return False
    return True


async def notify_general(
    dispatcher: NotificationDispatcher,
    user_id: str,
    title: str,
    body: str,
    data: dict[str, str] | None = None,
) -> bool:
    payload = build_general_payload(title, body, data)
    try:
        await dispatcher.dispatch_to_user(user_id, payload)
    except Exception:
        logger.exception("Error sending general notification to %s", user_id)
        dispatcher.db.rollback()
        return False
    return True


async def notify_bulk(
    db: Session,
    dispatcher: NotificationDispatcher,
    title: str,
    body: str,
    data: dict[str, str] | None = None,
) -> DispatchResult:
    """Announcement to every user with at least one registered token."""
    try:
        audience = list_token_owner_ids(db)
        result = await dispatcher.dispatch_to_users(audience, build_general_payload(title, body, data))
    except Exception:
        logger.exception("Error sending bulk notification")
        db.rollback()
        return DispatchResult()

    logger.info("Sent bulk notification to %d users", len(audience))
    return result
