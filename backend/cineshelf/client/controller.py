"""
Client-side notification controller.

Keeps a front end in step with the backend: push permission and the
device token, a live mirror of the user's inbox (initial load plus the
SSE stream), the unread counter, and delivery preferences.

    controller = NotificationController("https://api.example.com", id_token, platform)
    await controller.start()
    ...
    await controller.stop()
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx

from cineshelf.client.platform import Permission, PushPlatform
from cineshelf.client.sse import iter_sse_events

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_RECONNECT_SECONDS = 3.0


class NotificationController:
    def __init__(
        self,
        base_url: str,
        id_token: str,
        platform: PushPlatform,
        http_client: httpx.AsyncClient | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.id_token = id_token
        self.platform = platform
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        self.reconnect_delay = reconnect_delay

        self.is_supported = False
        self.permission: Permission = "default"
        self.token: str | None = None
        self.notifications: list[dict[str, Any]] = []
        self.unread_count = 0
        self.preferences: dict[str, bool] = {}
        self.last_error: str | None = None

        self._last_event_id: str | None = None
        self._stream_task: asyncio.Task | None = None

    # ── Plumbing ──────────────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.id_token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self.http.request(method, self._url(path), headers=self._headers, **kwargs)

    def _fail(self, message: str, exc: Exception | None = None) -> None:
        self.last_error = message
        if exc is not None:
            logger.warning("%s: %s", message, exc)
        else:
            logger.warning(message)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self, subscribe: bool = True) -> None:
        """
        Load the inbox, open the live stream and, if permission was
        already granted, make sure the backend holds a token for us.
        """
        self.is_supported = self.platform.is_supported()
        if self.is_supported:
            self.permission = self.platform.permission()
        else:
            logger.info("Push notifications are not supported on this platform")

        await self.refresh()
        await self.load_preferences()
        if subscribe and self._stream_task is None:
            self._stream_task = asyncio.create_task(self._run_stream())

        if not self.is_supported:
            return

        if self.permission == "granted":
            has_tokens = await self._backend_has_tokens()
            if has_tokens is False:
                await self._sync_token()
            elif has_tokens:
                # Already registered; hold the token so remove_token() can find it
                self.token = await self.platform.get_token()
        self.platform.on_message(self.handle_foreground_message)

    async def stop(self) -> None:
        task, self._stream_task = self._stream_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self.http.aclose()

    # ── Permission and token ──────────────────────────────────────────────────

    async def request_permission(self) -> bool:
        """Prompt if needed, then register the device token. Returns success."""
        if not self.is_supported:
            return False
        if self.permission == "granted" and self.token:
            return True

        self.permission = await self.platform.request_permission()
        if self.permission != "granted":
            return False
        return await self._sync_token()

    async def _backend_has_tokens(self) -> bool | None:
        try:
            response = await self._request("GET", "/notifications/token")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to check notification tokens", exc)
            return None
        return bool(response.json().get("hasTokens"))

    async def _sync_token(self) -> bool:
        token = await self.platform.get_token()
        if not token:
            self._fail("No push token available")
            return False
        try:
            response = await self._request(
                "POST",
                "/notifications/token",
                json={"token": token, "platform": getattr(self.platform, "name", "web")},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to store notification token", exc)
            return False
        self.token = token
        return True

    async def remove_token(self) -> bool:
        """Unregister the held token and turn notifications off locally."""
        if not self.token:
            return False
        try:
            response = await self._request("DELETE", "/notifications/token", json={"token": self.token})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to remove notification token", exc)
            return False
        self.token = None
        self.permission = "denied"
        return True

    # ── Inbox ─────────────────────────────────────────────────────────────────

    def _recount(self) -> None:
        self.unread_count = sum(1 for n in self.notifications if not n.get("isRead"))

    def _sort(self) -> None:
        self.notifications.sort(key=lambda n: n.get("createdAt") or "", reverse=True)

    def has_notification(self, notification_id: str | None) -> bool:
        return bool(notification_id) and any(n.get("id") == notification_id for n in self.notifications)

    def apply_notification(self, record: dict[str, Any]) -> None:
        """Upsert one inbox record by id."""
        for index, existing in enumerate(self.notifications):
            if existing.get("id") == record.get("id"):
                self.notifications[index] = {**existing, **record}
                break
        else:
            self.notifications.append(record)
        self._sort()
        self._recount()

    async def refresh(self) -> bool:
        """Replace the local list with the server's latest inbox page."""
        try:
            response = await self._request("GET", "/notifications")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to load notifications", exc)
            return False
        self.notifications = list(response.json())
        self._sort()
        self._recount()
        if self.notifications:
            self._last_event_id = self.notifications[0].get("id")
        return True

    async def mark_as_read(self, notification_ids: list[str]) -> bool:
        """
        Flip the local flags first, then tell the server. If the server
        call fails the local list is reloaded from the server.
        """
        ids = set(notification_ids)
        if not ids:
            return True
        for n in self.notifications:
            if n.get("id") in ids:
                n["isRead"] = True
        self._recount()

        try:
            response = await self._request(
                "POST",
                "/notifications/mark-read",
                json={"notificationIds": list(dict.fromkeys(notification_ids))},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to mark notifications as read", exc)
            await self.refresh()
            return False
        return True

    async def delete_notification(self, notification_id: str) -> bool:
        try:
            response = await self._request("DELETE", f"/notifications/{notification_id}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to delete notification", exc)
            return False
        self.notifications = [n for n in self.notifications if n.get("id") != notification_id]
        self._recount()
        return True

    # ── Live stream ───────────────────────────────────────────────────────────

    async def consume_stream(self) -> None:
        """
        Read one stream connection until the server closes it.

        Without a Last-Event-ID the server has nothing to backfill from, so
        the inbox is reloaded once the subscription is open.
        """
        headers = dict(self._headers)
        if self._last_event_id:
            headers["Last-Event-ID"] = self._last_event_id

        async with self.http.stream(
            "GET",
            self._url("/notifications/stream"),
            headers=headers,
            timeout=httpx.Timeout(DEFAULT_TIMEOUT_SECONDS, read=None),
        ) as response:
            response.raise_for_status()
            if "Last-Event-ID" not in headers:
                await self.refresh()
            async for event in iter_sse_events(response):
                if event.retry is not None:
                    self.reconnect_delay = event.retry / 1000
                if event.event != "notification" or not event.data:
                    continue
                try:
                    record = json.loads(event.data)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed stream event")
                    continue
                self.apply_notification(record)
                self._last_event_id = event.id or record.get("id") or self._last_event_id

    async def _run_stream(self) -> None:
        while True:
            try:
                await self.consume_stream()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code in (401, 403):
                    self._fail("Notification stream rejected credentials", exc)
                    return
                self._fail("Notification stream failed", exc)
            except httpx.HTTPError as exc:
                self._fail("Notification stream disconnected", exc)
            await asyncio.sleep(self.reconnect_delay)

    # ── Foreground pushes ─────────────────────────────────────────────────────

    async def handle_foreground_message(self, message: dict[str, Any]) -> None:
        """
        A push that arrived while the app is open. Skipped when the inbox
        already holds the record it refers to.
        """
        data = {str(k): str(v) for k, v in (message.get("data") or {}).items()}
        notification = message.get("notification") or {}
        notification_id = data.get("notificationId")
        if self.has_notification(notification_id):
            return

        title = notification.get("title") or message.get("title") or ""
        body = notification.get("body") or message.get("body") or ""
        self.apply_notification(
            {
                "id": notification_id or uuid4().hex,
                "type": data.get("type", "general"),
                "title": title,
                "body": body,
                "data": data,
                "imageUrl": notification.get("image"),
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "isRead": False,
            }
        )
        if self.permission == "granted":
            self.platform.show_notification(title, body, data)

    # ── Preferences ───────────────────────────────────────────────────────────

    async def load_preferences(self) -> dict[str, bool]:
        try:
            response = await self._request("GET", "/notifications/preferences")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to load notification preferences", exc)
            return self.preferences
        self.preferences = dict(response.json().get("preferences") or {})
        return self.preferences

    async def update_preferences(self, partial: dict[str, bool]) -> bool:
        try:
            response = await self._request(
                "PUT",
                "/notifications/preferences",
                json={"preferences": partial},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._fail("Failed to update notification preferences", exc)
            return False
        self.preferences = dict(response.json().get("preferences") or {**self.preferences, **partial})
        return True
