"""
Movie review business logic.
"""
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cineshelf.db.models import Review, User
from cineshelf.services.user_service import get_user_or_raise

MIN_REVIEW_LENGTH = 10
MIN_RATING = 1
MAX_RATING = 10


class ReviewNotFoundError(Exception):
    """Raised when a review does not exist."""


class NotReviewOwnerError(Exception):
    """Raised when a user tries to modify another user's review."""


class DuplicateReviewError(Exception):
    """Raised when a user already reviewed this movie."""


class InvalidReviewError(ValueError):
    """Raised when rating or text break the review rules."""


def _build_review_dict(review: Review, user: User) -> dict:
    return {
        "id": review.id,
        "user_id": user.id,
        "display_name": user.public_name,
        "avatar_url": user.avatar_url,
        "movie_id": review.movie_id,
        "movie_title": review.movie_title,
        "rating": review.rating,
        "text": review.text,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
    }


def validate_review(rating: int, text: str) -> str:
    """Return the trimmed review text or raise InvalidReviewError."""
    if rating is None or not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidReviewError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_REVIEW_LENGTH:
        raise InvalidReviewError(f"Review must be at least {MIN_REVIEW_LENGTH} characters")
    return cleaned


def create_review(
    db: Session,
    user_id: str,
    movie_id: str,
    movie_title: str,
    rating: int,
    text: str,
) -> dict:
    """Create a review. A user may hold only one review per movie."""
    cleaned = validate_review(rating, text)
    user = get_user_or_raise(db, user_id)

    existing = (
        db.query(Review)
        .filter(Review.user_id == user_id, Review.movie_id == movie_id)
        .first()
    )
    if existing is not None:
        raise DuplicateReviewError("You have already reviewed this movie")

    review = Review(
        user_id=user_id,
        movie_id=movie_id,
        movie_title=movie_title,
        rating=rating,
        text=cleaned,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidReviewError("Review rejected by the store") from exc
    db.refresh(review)
    return _build_review_dict(review, user)


def get_reviews_for_movie(
    db: Session,
    movie_id: str,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    """Reviews for a movie, newest first."""
    total = (
        db.query(func.count(Review.id))
        .filter(Review.movie_id == movie_id)
        .scalar()
    )
    rows = (
        db.query(Review, User)
        .join(User, Review.user_id == User.id)
        .filter(Review.movie_id == movie_id)
        .order_by(Review.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "reviews": [_build_review_dict(review, user) for review, user in rows],
        "total": total,
    }


def delete_review(db: Session, user_id: str, review_id: str) -> bool:
    """Delete a review. Only the owner can delete."""
    review = db.query(Review).filter(Review.id == review_id).first()
    if not review:
        raise ReviewNotFoundError(f"Review {review_id} not found")
    if review.user_id != user_id:
        raise NotReviewOwnerError("You can only delete your own reviews")

    db.delete(review)
    db.commit()
    return True
