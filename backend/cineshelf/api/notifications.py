"""
Notifications API — /notifications
──────────────────────────────────
Device tokens, delivery preferences, the in-app inbox, and the internal
triggers other services call when a social event happens.

Endpoints:
  POST   /notifications/token               — Register a push token
  DELETE /notifications/token               — Remove a push token
  GET    /notifications/token               — List my push tokens
  GET    /notifications/preferences         — My delivery preferences
  PUT    /notifications/preferences         — Partially update preferences
  GET    /notifications                     — Latest inbox records
  GET    /notifications/stream              — Live inbox (Server-Sent Events)
  POST   /notifications/mark-read           — Mark records as read
  DELETE /notifications/{notification_id}   — Delete one record

Internal (X-Internal-Key):
  POST   /notifications/bulk
  POST   /notifications/follower-gained
  POST   /notifications/movie-review
  POST   /notifications/followed-user-review
  POST   /notifications/recommendation
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cineshelf.core.config import settings
from cineshelf.core.logging import mask_token
from cineshelf.db.models import User
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user, require_internal_key
from cineshelf.deps.notifications import get_broker, get_dispatcher
from cineshelf.schemas.base import StatusResponse
from cineshelf.schemas.notifications import (
    BulkNotificationRequest,
    BulkNotificationResponse,
    FollowedUserReviewRequest,
    FollowedUserReviewResponse,
    FollowerGainedRequest,
    MarkReadRequest,
    MarkReadResponse,
    MovieReviewEventRequest,
    NotificationResponse,
    PreferencesResponse,
    RecommendationRequest,
    RemoveTokenRequest,
    StoreTokenRequest,
    TokenListResponse,
    UpdatePreferencesRequest,
    UpdatePreferencesResponse,
)
from cineshelf.services.dispatcher import NotificationDispatcher
from cineshelf.services.inbox_broker import InboxBroker, format_sse
from cineshelf.services.inbox_service import (
    delete_notification,
    get_notifications_by_id,
    list_notifications,
    list_notifications_after,
    mark_as_read,
    serialize_notification,
)
from cineshelf.services.notification_events import (
    notify_bulk,
    notify_followed_user_review,
    notify_follower_gained,
    notify_movie_review,
    notify_recommendation,
)
from cineshelf.services.preference_service import (
    UnknownPreferenceCategoryError,
    get_preferences,
    set_preferences,
)
from cineshelf.services.token_service import list_tokens, remove_token, store_token

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_RETRY_MS = 3000


def _server_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


# ── Tokens ────────────────────────────────────────────────────────────────────

@router.post("/token", response_model=StatusResponse)
def store_token_endpoint(
    payload: StoreTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    try:
        store_token(db, current_user.id, payload.token, payload.platform)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error storing notification token for user %s", current_user.id)
        raise _server_error("Failed to store notification token") from exc

    logger.info("Stored token %s for user %s", mask_token(payload.token), current_user.id)
    return {"success": True, "message": "Notification token stored successfully"}


@router.delete("/token", response_model=StatusResponse)
def remove_token_endpoint(
    payload: RemoveTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    try:
        remove_token(db, current_user.id, payload.token)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error removing notification token for user %s", current_user.id)
        raise _server_error("Failed to remove notification token") from exc
    return {"success": True, "message": "Notification token removed successfully"}


@router.get("/token", response_model=TokenListResponse)
def list_tokens_endpoint(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    tokens = list_tokens(db, current_user.id)
    return {
        "success": True,
        "tokens": tokens,
        "count": len(tokens),
        "has_tokens": bool(tokens),
    }


# ── Preferences ───────────────────────────────────────────────────────────────

@router.get("/preferences", response_model=PreferencesResponse)
def get_preferences_endpoint(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"success": True, "preferences": get_preferences(db, current_user.id)}


@router.put("/preferences", response_model=UpdatePreferencesResponse)
def update_preferences_endpoint(
    payload: UpdatePreferencesRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    try:
        preferences = set_preferences(db, current_user.id, payload.preferences)
    except UnknownPreferenceCategoryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error updating notification preferences for user %s", current_user.id)
        raise _server_error("Failed to update notification preferences") from exc
    return {
        "success": True,
        "message": "Notification preferences updated successfully",
        "preferences": preferences,
    }


# ── Inbox ─────────────────────────────────────────────────────────────────────

@router.get("", response_model=list[NotificationResponse])
def list_notifications_endpoint(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[dict]:
    rows = list_notifications(db, current_user.id, limit=settings.INBOX_PAGE_SIZE)
    return [serialize_notification(row) for row in rows]


@router.get("/stream")
async def stream_notifications(
    request: Request,
    last_event_id: str | None = Header(default=None, alias="Last-Event-ID"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    broker: InboxBroker = Depends(get_broker),
) -> StreamingResponse:
    """
    Live inbox. Each event is one serialized notification with its id as
    the SSE id. A reconnecting client sends Last-Event-ID and first gets
    whatever it missed.
    """
    user_id = current_user.id
    # Subscribe before reading the backlog so nothing written in between
    # is lost; a record seen twice is upserted by id on the client.
    sub = await broker.subscribe(user_id)
    backlog: list[dict] = []
    if last_event_id:
        try:
            backlog = [
                serialize_notification(row)
                for row in list_notifications_after(db, user_id, last_event_id)
            ]
        except SQLAlchemyError:
            await broker.unsubscribe(sub)
            raise

    keepalive = settings.INBOX_STREAM_KEEPALIVE_SECONDS

    async def stream():
        try:
            yield f"retry: {STREAM_RETRY_MS}\n\n"
            for msg in backlog:
                yield format_sse(data=msg, event_id=msg["id"])

            while True:
                if await request.is_disconnected():
                    break
                try:
                    msg = await asyncio.wait_for(sub.queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(data=msg, event_id=msg.get("id"))
        finally:
            await broker.unsubscribe(sub)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/mark-read", response_model=MarkReadResponse)
async def mark_read_endpoint(
    payload: MarkReadRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    broker: InboxBroker = Depends(get_broker),
) -> dict:
    """
    Flag records as read, then republish them so every open stream of
    this user (other tabs, other devices) sees the new isRead.
    """
    try:
        updated = mark_as_read(db, current_user.id, payload.notification_ids)
        rows = get_notifications_by_id(db, current_user.id, payload.notification_ids) if updated else []
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error marking notifications as read for user %s", current_user.id)
        raise _server_error("Failed to mark notifications as read") from exc

    for row in rows:
        await broker.publish(current_user.id, serialize_notification(row))
    return {"success": True, "message": "Notifications marked as read.", "updated": updated}


# ── Internal event triggers ──────────────────────────────────────────────────

@router.post(
    "/bulk",
    response_model=BulkNotificationResponse,
    dependencies=[Depends(require_internal_key)],
)
async def bulk_endpoint(
    payload: BulkNotificationRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    result = await notify_bulk(db, dispatcher, payload.title, payload.body, payload.data)
    return {
        "success": True,
        "message": "Bulk notification sent successfully",
        "result": result.as_dict(),
    }


@router.post(
    "/follower-gained",
    response_model=StatusResponse,
    dependencies=[Depends(require_internal_key)],
)
async def follower_gained_endpoint(
    payload: FollowerGainedRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    await notify_follower_gained(
        db,
        dispatcher,
        payload.follower_id,
        payload.follower_name,
        payload.followed_user_id,
    )
    return {"success": True, "message": "Follower gained notification sent successfully"}


@router.post(
    "/movie-review",
    response_model=StatusResponse,
    dependencies=[Depends(require_internal_key)],
)
async def movie_review_endpoint(
    payload: MovieReviewEventRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    await notify_movie_review(
        db,
        dispatcher,
        payload.reviewer_id,
        payload.movie_id,
        payload.movie_title,
        payload.reviewer_name,
        payload.rating,
    )
    return {"success": True, "message": "Movie review notification sent successfully"}


@router.post(
    "/followed-user-review",
    response_model=FollowedUserReviewResponse,
    dependencies=[Depends(require_internal_key)],
)
async def followed_user_review_endpoint(
    payload: FollowedUserReviewRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    notified = await notify_followed_user_review(
        dispatcher,
        payload.reviewer_id,
        payload.reviewer_name or "Someone",
        payload.movie_id,
        payload.movie_title,
        payload.rating,
        payload.follower_ids,
    )
    return {
        "success": True,
        "message": "Followed user review notification sent successfully",
        "notified_count": notified,
    }


@router.post(
    "/recommendation",
    response_model=StatusResponse,
    dependencies=[Depends(require_internal_key)],
)
async def recommendation_endpoint(
    payload: RecommendationRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    await notify_recommendation(
        dispatcher,
        payload.recommender_id,
        payload.recommender_name,
        payload.recipient_id,
        payload.movie_id,
        payload.movie_title,
        payload.reason,
    )
    return {"success": True, "message": "Movie recommendation notification sent successfully"}


# Registered last so the fixed paths above are matched first
@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification_endpoint(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    if not delete_notification(db, current_user.id, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
