"""
Social Service — /social
─────────────────────────
Follow graph.

Endpoints:
  POST   /social/follow                        — Follow or unfollow a user
  GET    /social/profile/{user_id}             — Profile summary for a user
  GET    /social/profile/{user_id}/followers   — Followers list for a user
  GET    /social/profile/{user_id}/following   — Following list for a user
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cineshelf.db.models import User
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user
from cineshelf.deps.notifications import get_dispatcher
from cineshelf.schemas.base import StatusResponse
from cineshelf.schemas.social import FollowActionRequest, FollowListItem, ProfileSummaryResponse
from cineshelf.services.dispatcher import NotificationDispatcher
from cineshelf.services.notification_events import notify_follower_gained
from cineshelf.services.social_service import (
    AlreadyFollowingError,
    FollowWriteError,
    NotFollowingError,
    SelfFollowError,
    create_follow,
    delete_follow,
    get_profile_summary,
    list_followers,
    list_following,
)
from cineshelf.services.user_service import UserNotFoundError, get_user_or_raise

router = APIRouter()


def _not_found(exc: UserNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/follow", response_model=StatusResponse)
async def follow_action_endpoint(
    payload: FollowActionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    """
    Follow or unfollow *targetUserId*. A new follow notifies the target
    after the edge is committed; notification problems never fail the call.
    """
    try:
        if payload.action == "follow":
            create_follow(db, current_user.id, payload.target_user_id)
        else:
            delete_follow(db, current_user.id, payload.target_user_id)
    except SelfFollowError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except UserNotFoundError as exc:
        raise _not_found(exc) from exc
    except (AlreadyFollowingError, NotFollowingError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except FollowWriteError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    if payload.action == "unfollow":
        return {"success": True, "message": "Successfully unfollowed user."}

    await notify_follower_gained(
        db,
        dispatcher,
        current_user.id,
        current_user.public_name,
        payload.target_user_id,
    )
    return {"success": True, "message": "Successfully followed user."}


@router.get("/profile/{user_id}", response_model=ProfileSummaryResponse)
def get_profile_summary_endpoint(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    try:
        return get_profile_summary(db, current_user.id, user_id)
    except UserNotFoundError as exc:
        raise _not_found(exc) from exc


@router.get("/profile/{user_id}/followers", response_model=list[FollowListItem])
def get_profile_followers(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[dict]:
    try:
        get_user_or_raise(db, user_id)
    except UserNotFoundError as exc:
        raise _not_found(exc) from exc
    return list_followers(db, user_id)


@router.get("/profile/{user_id}/following", response_model=list[FollowListItem])
def get_profile_following(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[dict]:
    try:
        get_user_or_raise(db, user_id)
    except UserNotFoundError as exc:
        raise _not_found(exc) from exc
    return list_following(db, user_id)
