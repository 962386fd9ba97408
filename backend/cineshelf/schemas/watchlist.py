"""
Watchlist request/response schemas.
"""
from datetime import datetime

from pydantic import Field

from cineshelf.schemas.base import CamelModel


class AddToWatchlistRequest(CamelModel):
    movie_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=500)
    poster_path: str | None = Field(default=None, max_length=500)


class WatchlistEntryResponse(CamelModel):
    movie_id: str
    title: str
    poster_path: str | None = None
    added_at: datetime


class WatchlistStatusResponse(CamelModel):
    movie_id: str
    in_watchlist: bool
