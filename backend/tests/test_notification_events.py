import unittest
from unittest.mock import AsyncMock, patch

from cineshelf.db.models import InboxNotification
from cineshelf.services.dispatcher import DispatchResult, NotificationDispatcher
from cineshelf.services.notification_events import (
    build_movie_review_payload,
    build_recommendation_payload,
    notify_bulk,
    notify_followed_user_review,
    notify_follower_gained,
    notify_general,
    notify_movie_review,
    notify_recommendation,
    watchlist_audience,
)
from cineshelf.services.preference_service import FOLLOWER_GAINED, MOVIE_REVIEWS, set_preferences
from cineshelf.services.token_service import store_token
from support import FakePushClient, add_watcher, make_session


class TestPayloadBuilders(unittest.TestCase):
    def test_movie_review_body_shows_rating_out_of_ten(self) -> None:
        payload = build_movie_review_payload("rev", "438631", "Dune", "Ava", 8)
        self.assertEqual(payload.type, "movie_review")
        self.assertEqual(payload.title, "New Review: Dune")
        self.assertEqual(payload.body, 'Ava rated "Dune" 8/10')
        self.assertEqual(payload.data["rating"], "8")

    def test_recommendation_reason_in_body(self) -> None:
        with_reason = build_recommendation_payload("bob", "Bob", "949", "Heat", "best heist ever")
        without = build_recommendation_payload("bob", "Bob", "949", "Heat")

        self.assertIn("best heist ever", with_reason.body)
        self.assertEqual(without.body, 'Bob recommended "Heat" to you')

    def test_builders_are_pure(self) -> None:
        self.assertEqual(
            build_movie_review_payload("rev", "1", "Up", "Ava", 9),
            build_movie_review_payload("rev", "1", "Up", "Ava", 9),
        )


class TestMovieReviewMapper(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.push = FakePushClient()
        self.dispatcher = NotificationDispatcher(self.db, self.push)

    def tearDown(self) -> None:
        self.db.close()

    async def test_three_watchers_one_opted_out(self) -> None:
        for uid in ("w1", "w2", "w3", "reviewer"):
            add_watcher(self.db, uid, "438631")
        set_preferences(self.db, "w2", {MOVIE_REVIEWS: False})

        notified = await notify_movie_review(
            self.db, self.dispatcher, "reviewer", "438631", "Dune", "Ava", 8,
        )

        self.assertEqual(notified, 2)
        recipients = {row.user_id for row in self.db.query(InboxNotification).all()}
        self.assertEqual(recipients, {"w1", "w3"})

    async def test_audience_ignores_other_movies(self) -> None:
        add_watcher(self.db, "w1", "438631")
        add_watcher(self.db, "w2", "27205", title="Inception")

        self.assertEqual(watchlist_audience(self.db, "438631", "reviewer"), ["w1"])

    async def test_no_watchers_dispatches_nothing(self) -> None:
        notified = await notify_movie_review(self.db, self.dispatcher, "reviewer", "1", "Up", "Ava", 9)
        self.assertEqual(notified, 0)
        self.assertEqual(self.db.query(InboxNotification).count(), 0)

    async def test_dispatch_errors_are_swallowed(self) -> None:
        add_watcher(self.db, "w1", "438631")
        with patch.object(
            self.dispatcher,
            "dispatch_to_users",
            new=AsyncMock(side_effect=RuntimeError("push exploded")),
        ):
            notified = await notify_movie_review(
                self.db, self.dispatcher, "reviewer", "438631", "Dune", "Ava", 8,
            )
        self.assertEqual(notified, 0)


class TestFollowerGainedMapper(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.push = FakePushClient()
        self.dispatcher = NotificationDispatcher(self.db, self.push)

    def tearDown(self) -> None:
        self.db.close()

    async def test_stores_notification_and_pushes(self) -> None:
        store_token(self.db, "bob", "B1")

        sent = await notify_follower_gained(self.db, self.dispatcher, "alice", "Alice", "bob")

        self.assertTrue(sent)
        row = self.db.query(InboxNotification).one()
        self.assertEqual(row.user_id, "bob")
        self.assertEqual(row.type, "follower_gained")
        self.assertEqual(row.body, "Alice started following you")
        self.assertEqual(self.push.tokens_sent(), ["B1"])

    async def test_explicit_opt_out_skips(self) -> None:
        set_preferences(self.db, "bob", {FOLLOWER_GAINED: False})

        sent = await notify_follower_gained(self.db, self.dispatcher, "alice", "Alice", "bob")

        self.assertFalse(sent)
        self.assertEqual(self.db.query(InboxNotification).count(), 0)


class TestOtherMappers(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.push = FakePushClient()
        self.dispatcher = NotificationDispatcher(self.db, self.push)

    def tearDown(self) -> None:
        self.db.close()

    async def test_followed_user_review_dedupes_and_excludes_reviewer(self) -> None:
        notified = await notify_followed_user_review(
            self.dispatcher,
            "ava",
            "Ava",
            "438631",
            "Dune",
            8,
            ["f1", "f2", "f1", "ava", ""],
        )

        self.assertEqual(notified, 2)
        rows = self.db.query(InboxNotification).all()
        self.assertCountEqual([row.user_id for row in rows], ["f1", "f2"])
        self.assertTrue(all(row.type == "followed_user_review" for row in rows))

    async def test_followed_user_review_ignores_preferences(self) -> None:
        set_preferences(self.db, "f1", {MOVIE_REVIEWS: False})
        notified = await notify_followed_user_review(
            self.dispatcher, "ava", "Ava", "1", "Up", 9, ["f1"],
        )
        self.assertEqual(notified, 1)

    async def test_recommendation_single_recipient(self) -> None:
        ok = await notify_recommendation(self.dispatcher, "bob", "Bob", "carol", "949", "Heat", "trust me")

        self.assertTrue(ok)
        row = self.db.query(InboxNotification).one()
        self.assertEqual(row.user_id, "carol")
        self.assertEqual(row.data["movieId"], "949")

    async def test_general_stringifies_data(self) -> None:
        await notify_general(self.dispatcher, "carol", "Heads up", "Maintenance tonight", {"window": 2})
        row = self.db.query(InboxNotification).one()
        self.assertEqual(row.data, {"window": "2"})

    async def test_bulk_targets_token_owners(self) -> None:
        store_token(self.db, "alice", "A1")
        store_token(self.db, "bob", "B1")

        result = await notify_bulk(self.db, self.dispatcher, "New feature", "Try the live inbox")

        self.assertEqual(result, DispatchResult(succeeded=2, failed=0))
        self.assertEqual(self.db.query(InboxNotification).count(), 2)
