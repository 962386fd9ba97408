"""Initial schema — users, follows, watchlist, reviews, notifications

Revision ID: 0001
Revises: —
Create Date: 2026-10-17 00:00:00
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.func.now())


def _user_fk(name: str = "user_id", **kwargs) -> sa.Column:
    return sa.Column(name, sa.String(128),
                     sa.ForeignKey("users.id", ondelete="CASCADE"),
                     nullable=False, **kwargs)


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("username", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(60), nullable=True),
        sa.Column("bio", sa.String(280), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("followers_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("following_count", sa.Integer, nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("followers_count >= 0", name="chk_followers_count"),
        sa.CheckConstraint("following_count >= 0", name="chk_following_count"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"])

    # ── follows ───────────────────────────────────────────────────────────────
    op.create_table(
        "follows",
        sa.Column("id", sa.String(32), primary_key=True),
        _user_fk("follower_id"),
        _user_fk("following_id"),
        _timestamp("created_at"),
        sa.UniqueConstraint("follower_id", "following_id", name="uq_follow"),
        sa.CheckConstraint("follower_id <> following_id", name="chk_no_self_follow"),
    )
    op.create_index("ix_follows_follower_id", "follows", ["follower_id"])
    op.create_index("ix_follows_following_id", "follows", ["following_id"])

    # ── watchlist_entries ─────────────────────────────────────────────────────
    op.create_table(
        "watchlist_entries",
        sa.Column("id", sa.String(32), primary_key=True),
        _user_fk(),
        sa.Column("movie_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("poster_path", sa.String(500), nullable=True),
        _timestamp("added_at"),
        sa.UniqueConstraint("user_id", "movie_id", name="uq_watchlist_user_movie"),
    )
    op.create_index("ix_watchlist_entries_user_id", "watchlist_entries", ["user_id"])
    # Audience lookup for review notifications
    op.create_index("ix_watchlist_entries_movie_id", "watchlist_entries", ["movie_id"])

    # ── reviews ───────────────────────────────────────────────────────────────
    op.create_table(
        "reviews",
        sa.Column("id", sa.String(32), primary_key=True),
        _user_fk(),
        sa.Column("movie_id", sa.String(64), nullable=False),
        sa.Column("movie_title", sa.String(500), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("rating BETWEEN 1 AND 10", name="chk_review_rating"),
        sa.CheckConstraint("length(trim(text)) >= 10", name="chk_review_text_len"),
    )
    op.create_index("ix_reviews_user_id", "reviews", ["user_id"])
    op.create_index("ix_reviews_movie_id", "reviews", ["movie_id"])
    op.create_index("idx_reviews_movie_created", "reviews", ["movie_id", "created_at"])

    # ── notification_tokens ───────────────────────────────────────────────────
    op.create_table(
        "notification_tokens",
        sa.Column("id", sa.String(32), primary_key=True),
        _user_fk(),
        sa.Column("token", sa.String(4096), nullable=False),
        sa.Column("platform", sa.String(16), nullable=False, server_default="web"),
        _timestamp("created_at"),
        _timestamp("last_used"),
        sa.UniqueConstraint("token", name="uq_notification_tokens_token"),
    )
    op.create_index("ix_notification_tokens_user_id", "notification_tokens", ["user_id"])

    # ── notification_preferences ──────────────────────────────────────────────
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(128),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("preferences", JSONType, nullable=False),
        _timestamp("updated_at"),
    )

    # ── notifications (in-app inbox) ──────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(32), primary_key=True),
        _user_fk(),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("data", JSONType, nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )
    op.create_index("idx_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("notification_preferences")
    op.drop_table("notification_tokens")
    op.drop_table("reviews")
    op.drop_table("watchlist_entries")
    op.drop_table("follows")
    op.drop_table("users")
