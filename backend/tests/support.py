"""
Shared test helpers: an in-memory SQLite database and a scripted push client.
"""
import asyncio

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cineshelf.db.models import Base, User, WatchlistEntry
from cineshelf.services.fcm_client import FCMSendError


def make_session() -> Session:
    """A fresh database per call; StaticPool keeps it alive across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory()


def add_user(db: Session, user_id: str, display_name: str | None = None) -> User:
    user = User(id=user_id, display_name=display_name or user_id.title())
    db.add(user)
    db.commit()
    return user


def add_watcher(db: Session, user_id: str, movie_id: str, title: str = "Dune: Part Two") -> None:
    db.add(WatchlistEntry(user_id=user_id, movie_id=movie_id, title=title))
    db.commit()


def unregistered() -> FCMSendError:
    return FCMSendError(
        "Requested entity was not found.",
        code="UNREGISTERED",
        status_code=404,
        permanent=True,
    )


def unavailable() -> FCMSendError:
    return FCMSendError("The service is currently unavailable.", code="UNAVAILABLE", status_code=503)


class FakePushClient:
    """
    Records every send; tokens listed in *failures* raise the given error.

    With *latency* set, each send yields to the loop for that long and
    ``peak_in_flight`` records the most sends running at once.
    """

    def __init__(self, failures: dict[str, Exception] | None = None, latency: float = 0.0) -> None:
        self.failures = failures or {}
        self.latency = latency
        self.sent: list[dict] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def send(self, token, title, body, data=None, image_url=None) -> str:
        self.sent.append(
            {"token": token, "title": title, "body": body, "data": dict(data or {}), "image_url": image_url}
        )
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if token in self.failures:
                raise self.failures[token]
        finally:
            self.in_flight -= 1
        return f"projects/test/messages/{len(self.sent)}"

    def tokens_sent(self) -> list[str]:
        return [item["token"] for item in self.sent]
