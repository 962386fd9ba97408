"""
Reviews API — /reviews
──────────────────────
Movie reviews. A new review notifies the movie's watchers and the
reviewer's followers.

Endpoints:
  POST   /reviews                     — Review a movie
  GET    /reviews/movie/{movie_id}    — Reviews for a movie
  DELETE /reviews/{review_id}         — Delete own review
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from cineshelf.db.models import User
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user
from cineshelf.deps.notifications import get_dispatcher
from cineshelf.schemas.reviews import CreateReviewRequest, ReviewResponse
from cineshelf.services.dispatcher import NotificationDispatcher
from cineshelf.services.notification_events import notify_followed_user_review, notify_movie_review
from cineshelf.services.review_service import (
    DuplicateReviewError,
    InvalidReviewError,
    NotReviewOwnerError,
    ReviewNotFoundError,
    create_review,
    delete_review,
    get_reviews_for_movie,
)
from cineshelf.services.social_service import list_follower_ids

router = APIRouter()


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review_endpoint(
    payload: CreateReviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    try:
        review = create_review(
            db,
            current_user.id,
            payload.movie_id,
            payload.movie_title,
            payload.rating,
            payload.text,
        )
    except InvalidReviewError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DuplicateReviewError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    reviewer_name = current_user.public_name
    await notify_movie_review(
        db,
        dispatcher,
        current_user.id,
        payload.movie_id,
        payload.movie_title,
        reviewer_name,
        payload.rating,
    )
    await notify_followed_user_review(
        dispatcher,
        current_user.id,
        reviewer_name,
        payload.movie_id,
        payload.movie_title,
        payload.rating,
        list_follower_ids(db, current_user.id),
    )
    return review


@router.get("/movie/{movie_id}", response_model=list[ReviewResponse])
def get_movie_reviews(
    movie_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[dict]:
    return get_reviews_for_movie(db, movie_id, limit=limit, offset=offset)["reviews"]


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review_endpoint(
    review_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    try:
        delete_review(db, current_user.id, review_id)
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NotReviewOwnerError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
