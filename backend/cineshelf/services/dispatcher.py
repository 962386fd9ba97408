"""
Notification dispatcher.

Turns a payload plus an audience into inbox writes and push attempts:

  1. Write exactly one inbox row for the user and publish it to live streams.
  2. Resolve the user's tokens; stop here (False) if there are none.
  3. Push to every token concurrently, bounded by a semaphore.
  4. Prune tokens the provider reports as permanently invalid.

The inbox is written first and unconditionally, so in-app visibility never
depends on the push provider.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session

from cineshelf.core.config import settings
from cineshelf.core.logging import mask_token
from cineshelf.services.fcm_client import FCMSendError
from cineshelf.services.inbox_broker import InboxBroker
from cineshelf.services.inbox_service import create_notification, serialize_notification
from cineshelf.services.token_service import list_tokens, prune_invalid_token, touch_tokens

logger = logging.getLogger(__name__)


class PushClient(Protocol):
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
        image_url: str | None = None,
    ) -> str: ...


@dataclass
class NotificationPayload:
    type: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    image_url: str | None = None


@dataclass
class DispatchResult:
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"succeeded": self.succeeded, "failed": self.failed}


@dataclass(frozen=True)
class _TokenOutcome:
    token: str
    success: bool
    permanent_failure: bool = False


class NotificationDispatcher:
    """
    Per-request dispatcher. The session is request-scoped; the push client
    and broker are process-wide and passed in.
    """

    def __init__(
        self,
        db: Session,
        push_client: PushClient | None,
        broker: InboxBroker | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.db = db
        self.push_client = push_client
        self.broker = broker
        self.max_concurrency = max(1, max_concurrency or settings.PUSH_MAX_CONCURRENCY)

    async def dispatch_to_user(self, user_id: str, payload: NotificationPayload) -> bool:
        """
        Deliver *payload* to one user. Returns True if at least one push
        succeeded. The inbox row is written regardless.
        """
        row = create_notification(
            self.db,
            user_id,
            type=payload.type,
            title=payload.title,
            body=payload.body,
            data=payload.data,
            image_url=payload.image_url,
        )
        if self.broker is not None:
            await self.broker.publish(user_id, serialize_notification(row))

        tokens = list_tokens(self.db, user_id)
        if not tokens:
            logger.info("No notification tokens found for user: %s", user_id)
            return False
        if self.push_client is None:
            logger.debug("Push disabled; stored in-app notification for user %s only", user_id)
            return False

        # Lets the client match a foreground push to the inbox row it already has
        push_data = {**payload.data, "type": payload.type, "notificationId": row.id}
        outcomes = await self._send_to_tokens(tokens, payload, push_data)

        for outcome in outcomes:
            if outcome.permanent_failure:
                self._prune(outcome.token)

        delivered = [o.token for o in outcomes if o.success]
        if delivered:
            try:
                touch_tokens(self.db, delivered)
            except Exception:
                logger.exception("Could not refresh last_used for user %s", user_id)
                self.db.rollback()

        logger.info(
            "Dispatched %s to user %s: %d/%d tokens delivered",
            payload.type, user_id, len(delivered), len(outcomes),
        )
        return bool(delivered)

    async def dispatch_to_users(
        self,
        user_ids: list[str],
        payload: NotificationPayload,
    ) -> DispatchResult:
        """
        Deliver *payload* to each user in order. One user's failure is
        counted and never stops the others.
        """
        result = DispatchResult()
        for user_id in user_ids:
            try:
                delivered = await self.dispatch_to_user(user_id, payload)
            except Exception:
                logger.exception("Error dispatching %s to user %s", payload.type, user_id)
                self.db.rollback()
                delivered = False
            if delivered:
                result.succeeded += 1
            else:
                result.failed += 1
        return result

    async def _send_to_tokens(
        self,
        tokens: list[str],
        payload: NotificationPayload,
        push_data: dict[str, str],
    ) -> list[_TokenOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def send_one(token: str) -> _TokenOutcome:
            async with semaphore:
                try:
                    await self.push_client.send(
                        token,
                        payload.title,
                        payload.body,
                        data=push_data,
                        image_url=payload.image_url,
                    )
                except FCMSendError as exc:
                    logger.warning(
                        "Failed to send notification to token %s: %s (%s)",
                        mask_token(token), exc, exc.code,
                    )
                    return _TokenOutcome(token, success=False, permanent_failure=exc.permanent)
                except Exception:
                    logger.exception("Unexpected push error for token %s", mask_token(token))
                    return _TokenOutcome(token, success=False)
                return _TokenOutcome(token, success=True)

        return list(await asyncio.gather(*(send_one(t) for t in tokens)))

    def _prune(self, token: str) -> None:
        try:
            prune_invalid_token(self.db, token)
        except Exception:
            logger.exception("Error removing invalid token %s", mask_token(token))
            self.db.rollback()
