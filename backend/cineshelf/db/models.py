"""
SQLAlchemy ORM models.

User ids are the identity provider's uids (opaque strings), so every
foreign key to users is a String. JSON columns use JSONB on Postgres and
plain JSON elsewhere (SQLite in tests).

Relationships are declared here so services can navigate the graph
without writing raw joins everywhere.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Base ──────────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Enums ─────────────────────────────────────────────────────────────────────

class NotificationTypeEnum(str, PyEnum):
    MOVIE_REVIEW = "movie_review"
    FOLLOWER_GAINED = "follower_gained"
    FOLLOWED_USER_REVIEW = "followed_user_review"
    RECOMMENDATION = "recommendation"
    GENERAL = "general"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ── Models ────────────────────────────────────────────────────────────────────

class User(Base):
    """
    Application user, keyed by the identity provider uid.

    followers_count / following_count are denormalised counters kept in
    step with the follows table by social_service in the same transaction.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True, comment="Identity provider uid")
    username = Column(String(32), unique=True, nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(60), nullable=True)
    bio = Column(String(280), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    followers_count = Column(Integer, default=0, nullable=False)
    following_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("followers_count >= 0", name="chk_followers_count"),
        CheckConstraint("following_count >= 0", name="chk_following_count"),
    )

    # Relationships
    following_assoc = relationship(
        "Follow",
        foreign_keys="Follow.follower_id",
        back_populates="follower",
        cascade="all, delete-orphan",
    )
    followers_assoc = relationship(
        "Follow",
        foreign_keys="Follow.following_id",
        back_populates="following_user",
        cascade="all, delete-orphan",
    )
    watchlist = relationship(
        "WatchlistEntry",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    notifications = relationship(
        "InboxNotification",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    @property
    def public_name(self) -> str:
        return self.display_name or self.username or "Someone"

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"


class Follow(Base):
    """
    Directed follow relationship: follower → following_user.
    One row is both sides of the edge (my "following", their "followers").
    """
    __tablename__ = "follows"

    id = Column(String(32), primary_key=True, default=_new_id)
    follower_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    following_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follow"),
        CheckConstraint("follower_id <> following_id", name="chk_no_self_follow"),
    )

    # Relationships
    follower = relationship("User", foreign_keys=[follower_id], back_populates="following_assoc")
    following_user = relationship("User", foreign_keys=[following_id], back_populates="followers_assoc")

    def __repr__(self) -> str:
        return f"<Follow {self.follower_id} → {self.following_id}>"


class WatchlistEntry(Base):
    """
    A movie on a user's personal watchlist.

    movie_id is the catalog (TMDB) id as a string; title and poster_path
    are denormalised so the list renders without a catalog round-trip.
    """
    __tablename__ = "watchlist_entries"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    movie_id = Column(String(64), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    poster_path = Column(String(500), nullable=True)
    added_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "movie_id", name="uq_watchlist_user_movie"),
    )

    user = relationship("User", back_populates="watchlist")

    def __repr__(self) -> str:
        return f"<WatchlistEntry user={self.user_id} movie={self.movie_id}>"


class Review(Base):
    """
    A user's rating and written review of a movie.
    One review per user per movie, enforced by review_service.
    """
    __tablename__ = "reviews"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    movie_id = Column(String(64), nullable=False, index=True)
    movie_title = Column(String(500), nullable=False)
    rating = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 10", name="chk_review_rating"),
        CheckConstraint("length(trim(text)) >= 10", name="chk_review_text_len"),
        Index("idx_reviews_movie_created", "movie_id", "created_at"),
    )

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Review user={self.user_id} movie={self.movie_id} rating={self.rating}>"


# ── Notifications ─────────────────────────────────────────────────────────────

class NotificationToken(Base):
    """
    A device/browser push registration token.

    token is unique across the system: re-registering it moves ownership to
    the latest user instead of creating a second row.
    """
    __tablename__ = "notification_tokens"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = Column(String(4096), nullable=False, unique=True)
    platform = Column(String(16), nullable=False, default="web")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_used = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<NotificationToken user={self.user_id} token={self.token[:20]!r}>"


class NotificationPreference(Base):
    """
    Per-user category opt-ins. Only explicitly set categories are stored;
    missing ones fall back to the defaults in preference_service.
    """
    __tablename__ = "notification_preferences"

    user_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    preferences = Column(JSONType, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )


class InboxNotification(Base):
    """
    One in-app notification. Append-only per user; only is_read changes.
    Written by the dispatcher for every event whether or not a push went out.
    """
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSONType, nullable=False, default=dict)
    image_url = Column(String(500), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        # Inbox listing: newest first per user
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )

    user = relationship("User", back_populates="notifications")

    def __repr__(self) -> str:
        return f"<InboxNotification id={self.id} user={self.user_id} type={self.type}>"
