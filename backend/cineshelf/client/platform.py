"""
Push platform seam for the client controller.

A front end plugs in whatever actually talks to the device (a browser
bridge, a desktop notifier, a fake in tests).
"""
from typing import Any, Awaitable, Callable, Literal, Protocol

Permission = Literal["default", "granted", "denied"]

ForegroundHandler = Callable[[dict[str, Any]], Awaitable[None]]


class PushPlatform(Protocol):
    name: str

    def is_supported(self) -> bool: ...

    def permission(self) -> Permission: ...

    async def request_permission(self) -> Permission: ...

    async def get_token(self) -> str | None: ...

    def on_message(self, handler: ForegroundHandler) -> None:
        """Register the callback for pushes that arrive while the app is in front."""
        ...

    def show_notification(self, title: str, body: str, data: dict[str, str]) -> None: ...
