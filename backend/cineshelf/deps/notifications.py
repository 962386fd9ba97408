"""
Notification dependencies.

The push client and inbox broker are process-wide and live on app.state
(see the lifespan in cineshelf.main); the dispatcher is built per request
around the request's session.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cineshelf.core.config import settings
from cineshelf.db.session import get_db
from cineshelf.services.dispatcher import NotificationDispatcher, PushClient
from cineshelf.services.inbox_broker import InboxBroker


def get_push_client(request: Request) -> PushClient | None:
    """None when push is not configured; notifications then reach the inbox only."""
    return getattr(request.app.state, "push_client", None)


def get_broker(request: Request) -> InboxBroker:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        broker = InboxBroker()
        request.app.state.broker = broker
    return broker


def get_dispatcher(
    db: Session = Depends(get_db),
    push_client: PushClient | None = Depends(get_push_client),
    broker: InboxBroker = Depends(get_broker),
) -> NotificationDispatcher:
    return NotificationDispatcher(
        db,
        push_client,
        broker=broker,
        max_concurrency=settings.PUSH_MAX_CONCURRENCY,
    )
