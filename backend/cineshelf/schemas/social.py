"""
Social request/response schemas.
"""
from datetime import datetime
from typing import Literal

from cineshelf.schemas.base import CamelModel


class FollowActionRequest(CamelModel):
    """Follow or unfollow another user."""

    target_user_id: str
    action: Literal["follow", "unfollow"]


class FollowListItem(CamelModel):
    """One user in followers/following lists."""

    user_id: str
    display_name: str
    avatar_url: str | None = None
    followed_at: datetime


class ProfileSummaryResponse(CamelModel):
    """Profile header details plus follow-state."""

    user_id: str
    username: str | None = None
    display_name: str
    bio: str | None = None
    avatar_url: str | None = None
    followers_count: int
    following_count: int
    is_self: bool
    is_following: bool
    is_followed_by: bool
