"""
Review request/response schemas.
"""
from datetime import datetime

from pydantic import Field

from cineshelf.schemas.base import CamelModel


class CreateReviewRequest(CamelModel):
    """Review a movie. One review per user per movie."""

    movie_id: str = Field(..., min_length=1, max_length=64)
    movie_title: str = Field(..., min_length=1, max_length=500)
    rating: int = Field(..., ge=1, le=10)
    text: str = Field(..., max_length=5000)


class ReviewResponse(CamelModel):
    """A single review."""

    id: str
    user_id: str
    display_name: str
    avatar_url: str | None = None
    movie_id: str
    movie_title: str
    rating: int
    text: str
    created_at: datetime
    updated_at: datetime
