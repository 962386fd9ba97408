"""
Notification request/response schemas.
"""
from pydantic import Field, field_validator

from cineshelf.schemas.base import CamelModel, StatusResponse


def _required_text(value: str, name: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"Missing required field: {name}")
    return value


# ── Tokens ────────────────────────────────────────────────────────────────────

class StoreTokenRequest(CamelModel):
    """Register a device push token for the caller."""

    token: str = Field(..., max_length=4096)
    platform: str = Field(default="web", max_length=32)

    @field_validator("token")
    @classmethod
    def token_not_blank(cls, v: str) -> str:
        return _required_text(v, "token")


class RemoveTokenRequest(CamelModel):
    token: str

    @field_validator("token")
    @classmethod
    def token_not_blank(cls, v: str) -> str:
        return _required_text(v, "token")


class TokenListResponse(CamelModel):
    success: bool = True
    tokens: list[str]
    count: int
    has_tokens: bool


# ── Preferences ───────────────────────────────────────────────────────────────

class UpdatePreferencesRequest(CamelModel):
    """Partial update: categories left out keep their stored value."""

    preferences: dict[str, bool]


class PreferencesResponse(CamelModel):
    success: bool = True
    preferences: dict[str, bool]


class UpdatePreferencesResponse(StatusResponse):
    preferences: dict[str, bool]


# ── Inbox ─────────────────────────────────────────────────────────────────────

class NotificationResponse(CamelModel):
    """One inbox record."""

    id: str
    user_id: str
    type: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    image_url: str | None = None
    created_at: str | None = None
    is_read: bool = False


class MarkReadRequest(CamelModel):
    notification_ids: list[str]

    @field_validator("notification_ids")
    @classmethod
    def ids_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("notificationIds must be a non-empty array")
        return v


class MarkReadResponse(StatusResponse):
    updated: int


# ── Internal event triggers ──────────────────────────────────────────────────

class BulkNotificationRequest(CamelModel):
    title: str
    body: str
    data: dict[str, str] | None = None


class DispatchSummary(CamelModel):
    succeeded: int
    failed: int


class BulkNotificationResponse(StatusResponse):
    result: DispatchSummary


class FollowerGainedRequest(CamelModel):
    follower_id: str
    follower_name: str
    followed_user_id: str


class MovieReviewEventRequest(CamelModel):
    reviewer_id: str
    movie_id: str
    movie_title: str
    reviewer_name: str
    rating: int = Field(..., ge=1, le=10)


class FollowedUserReviewRequest(CamelModel):
    reviewer_id: str
    reviewer_name: str | None = None
    movie_id: str
    movie_title: str
    rating: int = Field(..., ge=1, le=10)
    follower_ids: list[str]


class FollowedUserReviewResponse(StatusResponse):
    notified_count: int


class RecommendationRequest(CamelModel):
    recommender_id: str
    recommender_name: str
    recipient_id: str
    movie_id: str
    movie_title: str
    reason: str | None = None
