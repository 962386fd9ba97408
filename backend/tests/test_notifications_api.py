import asyncio
import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from cineshelf.api.notifications import stream_notifications
from cineshelf.core.config import settings
from cineshelf.core.security import create_id_token
from cineshelf.db.models import InboxNotification
from cineshelf.db.session import get_db
from cineshelf.deps.auth import get_current_user
from cineshelf.deps.notifications import get_broker, get_push_client
from cineshelf.main import app, validation_message
from cineshelf.services.inbox_broker import InboxBroker
from cineshelf.services.inbox_service import create_notification, serialize_notification
from cineshelf.services.token_service import list_tokens
from support import FakePushClient, add_user, make_session


class NotificationsApiCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user = add_user(self.db, "alice")
        self.push = FakePushClient()
        self.client = TestClient(app)
        app.dependency_overrides[get_db] = lambda: self.db
        app.dependency_overrides[get_push_client] = lambda: self.push

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def login(self) -> None:
        app.dependency_overrides[get_current_user] = lambda: self.user


class TestAuth(NotificationsApiCase):
    def test_requires_bearer(self) -> None:
        response = self.client.get("/notifications")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Unauthorized: No token provided"})

    def test_rejects_garbage_token(self) -> None:
        response = self.client.get("/notifications", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Unauthorized: Invalid token"})

    def test_valid_id_token_provisions_user(self) -> None:
        token = create_id_token("fresh-uid", name="Fresh Face")
        response = self.client.get("/notifications/token", headers={"Authorization": f"Bearer {token}"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["hasTokens"], False)


class TestTokenEndpoints(NotificationsApiCase):
    def test_missing_token_field(self) -> None:
        self.login()
        response = self.client.post("/notifications/token", json={})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing required field: token"})

    def test_blank_token_field(self) -> None:
        self.login()
        response = self.client.post("/notifications/token", json={"token": "   "})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing required field: token"})

    def test_store_list_and_remove(self) -> None:
        self.login()
        stored = self.client.post("/notifications/token", json={"token": "T1"})
        self.assertEqual(stored.status_code, 200)
        self.assertEqual(stored.json()["message"], "Notification token stored successfully")
        self.client.post("/notifications/token", json={"token": "T1"})

        listed = self.client.get("/notifications/token").json()
        self.assertEqual(listed, {"success": True, "tokens": ["T1"], "count": 1, "hasTokens": True})

        removed = self.client.request("DELETE", "/notifications/token", json={"token": "T1"})
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(list_tokens(self.db, "alice"), [])

    def test_remove_absent_token_succeeds(self) -> None:
        self.login()
        response = self.client.request("DELETE", "/notifications/token", json={"token": "ghost"})
        self.assertEqual(response.status_code, 200)


class TestPreferenceEndpoints(NotificationsApiCase):
    def test_defaults_then_partial_update(self) -> None:
        self.login()
        initial = self.client.get("/notifications/preferences").json()["preferences"]
        self.assertTrue(all(initial.values()))

        response = self.client.put("/notifications/preferences", json={"preferences": {"movieReviews": False}})
        self.assertEqual(response.status_code, 200)
        prefs = response.json()["preferences"]
        self.assertFalse(prefs["movieReviews"])
        self.assertTrue(prefs["followerGained"])

    def test_unknown_category_is_400(self) -> None:
        self.login()
        response = self.client.put("/notifications/preferences", json={"preferences": {"spam": True}})
        self.assertEqual(response.status_code, 400)
        self.assertIn("spam", response.json()["error"])

    def test_missing_preferences_field(self) -> None:
        self.login()
        response = self.client.put("/notifications/preferences", json={})
        self.assertEqual(response.json(), {"error": "Missing required field: preferences"})


class TestInboxEndpoints(NotificationsApiCase):
    def test_mark_read_round_trip(self) -> None:
        self.login()
        ids = [
            create_notification(self.db, "alice", type="general", title=f"n{i}", body="b").id
            for i in range(3)
        ]

        response = self.client.post("/notifications/mark-read", json={"notificationIds": ids[:2]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["updated"], 2)

        self.db.expire_all()
        inbox = {n["id"]: n["isRead"] for n in self.client.get("/notifications").json()}
        self.assertEqual(inbox, {ids[0]: True, ids[1]: True, ids[2]: False})

    def test_mark_read_reaches_open_streams(self) -> None:
        self.login()
        broker = InboxBroker()
        app.dependency_overrides[get_broker] = lambda: broker
        row = create_notification(self.db, "alice", type="general", title="Hi", body="b")
        sub = asyncio.run(broker.subscribe("alice"))

        response = self.client.post("/notifications/mark-read", json={"notificationIds": [row.id]})

        self.assertEqual(response.json()["updated"], 1)
        message = sub.queue.get_nowait()
        self.assertEqual(message["id"], row.id)
        self.assertTrue(message["isRead"])
        self.assertTrue(sub.queue.empty())

    def test_mark_read_of_unknown_ids_publishes_nothing(self) -> None:
        self.login()
        broker = InboxBroker()
        app.dependency_overrides[get_broker] = lambda: broker
        sub = asyncio.run(broker.subscribe("alice"))

        response = self.client.post("/notifications/mark-read", json={"notificationIds": ["missing"]})

        self.assertEqual(response.json()["updated"], 0)
        self.assertTrue(sub.queue.empty())

    def test_mark_read_requires_ids(self) -> None:
        self.login()
        response = self.client.post("/notifications/mark-read", json={"notificationIds": []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "notificationIds must be a non-empty array"})

    def test_inbox_only_shows_own_notifications(self) -> None:
        self.login()
        create_notification(self.db, "bob", type="general", title="not yours", body="b")
        self.assertEqual(self.client.get("/notifications").json(), [])

    def test_delete_notification(self) -> None:
        self.login()
        row = create_notification(self.db, "alice", type="general", title="bye", body="b")

        self.assertEqual(self.client.delete(f"/notifications/{row.id}").status_code, 204)
        self.assertEqual(self.client.delete(f"/notifications/{row.id}").status_code, 404)


class FakeStreamRequest:
    def __init__(self) -> None:
        self.disconnected = False

    async def is_disconnected(self) -> bool:
        return self.disconnected


def _add_at(db, user_id: str, title: str, minutes: int) -> InboxNotification:
    row = create_notification(db, user_id, type="general", title=title, body="b")
    row.created_at = datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    db.commit()
    return row


class TestInboxStream(unittest.IsolatedAsyncioTestCase):
    """Drives the stream endpoint's body directly, one frame at a time."""

    def setUp(self) -> None:
        self.db = make_session()
        self.user = add_user(self.db, "alice")
        self.broker = InboxBroker()
        self.request = FakeStreamRequest()

    def tearDown(self) -> None:
        self.db.close()

    async def _open(self, last_event_id: str | None = None):
        response = await stream_notifications(
            self.request,
            last_event_id=last_event_id,
            current_user=self.user,
            db=self.db,
            broker=self.broker,
        )
        return response, response.body_iterator

    async def test_retry_then_backlog_after_last_event_id(self) -> None:
        first = _add_at(self.db, "alice", "one", 0)
        second = _add_at(self.db, "alice", "two", 1)
        third = _add_at(self.db, "alice", "three", 2)

        response, body = await self._open(last_event_id=first.id)

        self.assertEqual(response.media_type, "text/event-stream")
        self.assertEqual(response.headers["cache-control"], "no-cache")
        self.assertEqual(await anext(body), "retry: 3000\n\n")
        frames = [await anext(body), await anext(body)]
        self.assertTrue(frames[0].startswith(f"id: {second.id}\nevent: notification\ndata: "))
        self.assertTrue(frames[1].startswith(f"id: {third.id}\n"))
        payload = json.loads(frames[1].split("data: ", 1)[1])
        self.assertEqual(payload["title"], "three")
        await body.aclose()

    async def test_live_record_is_framed(self) -> None:
        _, body = await self._open()
        await anext(body)

        row = create_notification(self.db, "alice", type="general", title="live", body="b")
        await self.broker.publish("alice", serialize_notification(row))

        frame = await anext(body)
        self.assertTrue(frame.startswith(f"id: {row.id}\n"))
        self.assertTrue(frame.endswith("\n\n"))
        await body.aclose()

    async def test_disconnect_ends_stream_and_unsubscribes(self) -> None:
        _, body = await self._open()
        await anext(body)
        self.assertEqual(await self.broker.subscriber_count("alice"), 1)

        self.request.disconnected = True
        with self.assertRaises(StopAsyncIteration):
            await anext(body)
        self.assertEqual(await self.broker.subscriber_count("alice"), 0)

    async def test_subscribes_before_reading_backlog(self) -> None:
        anchor = _add_at(self.db, "alice", "one", 0)
        seen: list[int] = []

        def backlog(db, user_id, last_seen_id):
            seen.append(len(self.broker._subs.get(user_id, ())))
            return []

        with patch("cineshelf.api.notifications.list_notifications_after", side_effect=backlog):
            _, body = await self._open(last_event_id=anchor.id)

        self.assertEqual(seen, [1])
        await body.aclose()


class TestInternalEndpoints(NotificationsApiCase):
    def test_follower_gained_writes_inbox(self) -> None:
        response = self.client.post(
            "/notifications/follower-gained",
            json={"followerId": "alice", "followerName": "Alice", "followedUserId": "bob"},
        )
        self.assertEqual(response.status_code, 200)
        row = self.db.query(InboxNotification).one()
        self.assertEqual(row.user_id, "bob")

    def test_followed_user_review_reports_count(self) -> None:
        response = self.client.post(
            "/notifications/followed-user-review",
            json={
                "reviewerId": "alice",
                "movieId": "438631",
                "movieTitle": "Dune",
                "rating": 9,
                "followerIds": ["bob", "carol", "bob"],
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["notifiedCount"], 2)

    def test_followed_user_review_missing_field(self) -> None:
        response = self.client.post(
            "/notifications/followed-user-review",
            json={"reviewerId": "alice", "movieId": "1", "movieTitle": "Up", "rating": 9},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing required field: followerIds"})

    def test_bulk_returns_result(self) -> None:
        self.login()
        self.client.post("/notifications/token", json={"token": "A1"})

        response = self.client.post("/notifications/bulk", json={"title": "Hi", "body": "All"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"], {"succeeded": 1, "failed": 0})
        self.assertEqual(self.push.tokens_sent(), ["A1"])

    def test_internal_key_enforced_when_configured(self) -> None:
        body = {"title": "Hi", "body": "All"}
        with patch.object(settings, "INTERNAL_API_KEY", "s3cret"):
            denied = self.client.post("/notifications/bulk", json=body)
            allowed = self.client.post("/notifications/bulk", json=body, headers={"X-Internal-Key": "s3cret"})

        self.assertEqual(denied.status_code, 401)
        self.assertEqual(allowed.status_code, 200)


class TestValidationMessage(unittest.TestCase):
    def test_missing_field(self) -> None:
        errors = [{"type": "missing", "loc": ("body", "token"), "msg": "Field required"}]
        self.assertEqual(validation_message(errors), "Missing required field: token")

    def test_missing_body(self) -> None:
        self.assertEqual(
            validation_message([{"type": "missing", "loc": ("body",), "msg": "Field required"}]),
            "Missing request body",
        )

    def test_other_errors_name_the_field(self) -> None:
        errors = [{"type": "less_than_equal", "loc": ("body", "rating"), "msg": "Input should be less than or equal to 10"}]
        self.assertEqual(validation_message(errors), "rating: Input should be less than or equal to 10")
