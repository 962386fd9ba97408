"""
Personal watchlist business logic.

At most one entry per (user, movie); adding a movie twice refreshes its
denormalised display fields instead of duplicating it.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cineshelf.db.models import WatchlistEntry
from cineshelf.services.user_service import get_or_create_user


def _entry_dict(entry: WatchlistEntry) -> dict:
    return {
        "movie_id": entry.movie_id,
        "title": entry.title,
        "poster_path": entry.poster_path,
        "added_at": entry.added_at,
    }


def _get_entry(db: Session, user_id: str, movie_id: str) -> WatchlistEntry | None:
    return (
        db.query(WatchlistEntry)
        .filter(
            WatchlistEntry.user_id == user_id,
            WatchlistEntry.movie_id == movie_id,
        )
        .first()
    )


def add_to_watchlist(
    db: Session,
    user_id: str,
    movie_id: str,
    title: str,
    poster_path: str | None = None,
) -> dict:
    """Add (or refresh) a movie on the user's watchlist."""
    get_or_create_user(db, user_id)

    entry = _get_entry(db, user_id, movie_id)
    if entry is None:
        entry = WatchlistEntry(user_id=user_id, movie_id=movie_id)
    entry.title = title
    entry.poster_path = poster_path
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent add of the same movie
        db.rollback()
        entry = _get_entry(db, user_id, movie_id)
        entry.title = title
        entry.poster_path = poster_path
        db.add(entry)
        db.commit()
    db.refresh(entry)
    return _entry_dict(entry)


def remove_from_watchlist(db: Session, user_id: str, movie_id: str) -> bool:
    """Remove a movie. Returns True when an entry was deleted."""
    count = (
        db.query(WatchlistEntry)
        .filter(
            WatchlistEntry.user_id == user_id,
            WatchlistEntry.movie_id == movie_id,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return count > 0


def is_in_watchlist(db: Session, user_id: str, movie_id: str) -> bool:
    return _get_entry(db, user_id, movie_id) is not None


def get_watchlist(db: Session, user_id: str) -> list[dict]:
    """All movies on the user's watchlist, most recently added first."""
    rows = (
        db.query(WatchlistEntry)
        .filter(WatchlistEntry.user_id == user_id)
        .order_by(WatchlistEntry.added_at.desc())
        .all()
    )
    return [_entry_dict(row) for row in rows]
