"""
Watchlist API — /watchlist
──────────────────────────
The caller's personal watchlist. Watchlist owners are the audience for
review notifications on a movie.

Endpoints:
  GET    /watchlist                 — My watchlist
  POST   /watchlist                 — Add (or refresh) a movie
  GET    /watchlist/{movie_id}      — Is this movie on my watchlist?
  DELETE /watchlist/{movie_id}      — Remove a movie
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cineshelf.db.models import User
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user
from cineshelf.schemas.watchlist import (
    AddToWatchlistRequest,
    WatchlistEntryResponse,
    WatchlistStatusResponse,
)
from cineshelf.services.watchlist_service import (
    add_to_watchlist,
    get_watchlist,
    is_in_watchlist,
    remove_from_watchlist,
)

router = APIRouter()


@router.get("", response_model=list[WatchlistEntryResponse])
def get_my_watchlist(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[dict]:
    return get_watchlist(db, current_user.id)


@router.post("", response_model=WatchlistEntryResponse, status_code=status.HTTP_201_CREATED)
def add_movie(
    payload: AddToWatchlistRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return add_to_watchlist(
        db,
        current_user.id,
        payload.movie_id,
        payload.title,
        payload.poster_path,
    )


@router.get("/{movie_id}", response_model=WatchlistStatusResponse)
def watchlist_status(
    movie_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"movie_id": movie_id, "in_watchlist": is_in_watchlist(db, current_user.id, movie_id)}


@router.delete("/{movie_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_movie(
    movie_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    if not remove_from_watchlist(db, current_user.id, movie_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Movie not in watchlist")
