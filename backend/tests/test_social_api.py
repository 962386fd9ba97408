import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from cineshelf.db.models import InboxNotification, User
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user
from cineshelf.deps.notifications import get_push_client
from cineshelf.main import app
from cineshelf.services.social_service import (
    AlreadyFollowingError,
    FollowWriteError,
    NotFollowingError,
    SelfFollowError,
)
from cineshelf.services.user_service import UserNotFoundError
from support import FakePushClient, add_user, make_session


def _viewer(user_id: str = "alice") -> SimpleNamespace:
    return SimpleNamespace(id=user_id, public_name=user_id.title())


class TestSocialApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(app)
        app.dependency_overrides[get_db] = lambda: object()
        app.dependency_overrides[get_push_client] = lambda: None

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_follow_requires_auth(self) -> None:
        response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "follow"})
        self.assertEqual(response.status_code, 401)

    def test_follow_success_notifies_target(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        notify = AsyncMock(return_value=True)

        with patch("cineshelf.api.social.create_follow", return_value={}) as create, \
                patch("cineshelf.api.social.notify_follower_gained", new=notify):
            response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "follow"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "message": "Successfully followed user."})
        self.assertEqual(create.call_args.args[1:], ("alice", "bob"))
        self.assertEqual(notify.await_args.args[2:], ("alice", "Alice", "bob"))

    def test_unfollow_does_not_notify(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        notify = AsyncMock()

        with patch("cineshelf.api.social.delete_follow", return_value=None), \
                patch("cineshelf.api.social.notify_follower_gained", new=notify):
            response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "unfollow"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Successfully unfollowed user.")
        notify.assert_not_awaited()

    def test_invalid_action_is_400(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "poke"})
        self.assertEqual(response.status_code, 400)

    def test_missing_target_is_400(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        response = self.client.post("/social/follow", json={"action": "follow"})
        self.assertEqual(response.json(), {"error": "Missing required field: targetUserId"})

    def test_error_mapping(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        cases = [
            ("create_follow", "follow", SelfFollowError("no self follow"), 400),
            ("create_follow", "follow", UserNotFoundError("missing"), 404),
            ("create_follow", "follow", AlreadyFollowingError("already"), 409),
            ("create_follow", "follow", FollowWriteError("boom"), 500),
            ("delete_follow", "unfollow", NotFollowingError("not following"), 409),
        ]
        for target, action, error, expected in cases:
            with self.subTest(error=type(error).__name__):
                with patch(f"cineshelf.api.social.{target}", side_effect=error):
                    response = self.client.post(
                        "/social/follow",
                        json={"targetUserId": "bob", "action": action},
                    )
                self.assertEqual(response.status_code, expected)
                self.assertIn("error", response.json())

    def test_profile_response_shape(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        with patch(
            "cineshelf.api.social.get_profile_summary",
            return_value={
                "user_id": "bob",
                "username": "bobby",
                "display_name": "Bob",
                "bio": None,
                "avatar_url": None,
                "followers_count": 3,
                "following_count": 1,
                "is_self": False,
                "is_following": True,
                "is_followed_by": False,
            },
        ):
            response = self.client.get("/social/profile/bob")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["followersCount"], 3)
        self.assertTrue(payload["isFollowing"])

    def test_followers_list_shape(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: _viewer()
        with patch("cineshelf.api.social.get_user_or_raise"), patch(
            "cineshelf.api.social.list_followers",
            return_value=[
                {
                    "user_id": "carol",
                    "display_name": "Carol",
                    "avatar_url": None,
                    "followed_at": datetime.now(timezone.utc),
                }
            ],
        ):
            response = self.client.get("/social/profile/bob/followers")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()[0]["userId"], "carol")


class TestFollowFlow(unittest.TestCase):
    """End to end against SQLite: edge, counters and notification together."""

    def setUp(self) -> None:
        self.db = make_session()
        self.alice = add_user(self.db, "alice")
        add_user(self.db, "bob")
        self.push = FakePushClient()
        self.client = TestClient(app)
        app.dependency_overrides[get_db] = lambda: self.db
        app.dependency_overrides[get_push_client] = lambda: self.push
        app.dependency_overrides[get_current_user] = lambda: self.alice

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_follow_then_unfollow(self) -> None:
        response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "follow"})
        self.assertEqual(response.status_code, 200)

        self.db.expire_all()
        self.assertEqual(self.db.get(User, "alice").following_count, 1)
        self.assertEqual(self.db.get(User, "bob").followers_count, 1)
        note = self.db.query(InboxNotification).one()
        self.assertEqual(note.user_id, "bob")
        self.assertEqual(note.type, "follower_gained")

        response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "unfollow"})
        self.assertEqual(response.status_code, 200)
        self.db.expire_all()
        self.assertEqual(self.db.get(User, "bob").followers_count, 0)

    def test_follow_succeeds_when_notifying_fails(self) -> None:
        with patch(
            "cineshelf.services.dispatcher.create_notification",
            side_effect=RuntimeError("inbox down"),
        ):
            response = self.client.post("/social/follow", json={"targetUserId": "bob", "action": "follow"})

        self.assertEqual(response.status_code, 200)
        self.db.expire_all()
        self.assertEqual(self.db.get(User, "bob").followers_count, 1)
