"""
FCM Client
──────────
Sends pushes through the Firebase Admin SDK (FCM HTTP v1 under the hood).

The SDK app is initialized once from the service-account settings and kept
by the FCMClient that the lifespan puts on app.state. The SDK's send call
is blocking, so each send runs in a worker thread.
"""
import asyncio
import logging

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from cineshelf.core.config import settings
from cineshelf.core.logging import mask_token

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "cineshelf-push"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class FCMConfigError(Exception):
    """Raised when the client is built without service-account credentials."""


class FCMSendError(Exception):
    """
    A single message failed to send.

    permanent=True means the registration token is dead (unregistered,
    issued for another sender, or malformed) and should be pruned;
    anything else is treated as transient.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        permanent: bool = False,
    ) -> None:
        self.code = code
        self.status_code = status_code
        self.permanent = permanent
        super().__init__(message)


def _is_bad_token_argument(exc: exceptions.FirebaseError) -> bool:
    return (
        isinstance(exc, exceptions.InvalidArgumentError)
        and "registration token" in str(exc).lower()
    )


def classify_error(exc: exceptions.FirebaseError) -> FCMSendError:
    """
    Turn an SDK error into an FCMSendError.

    Only the token-specific FCM errors are permanent. A bare NOT_FOUND
    (wrong project, missing resource) is not about the token.
    """
    if isinstance(exc, messaging.UnregisteredError):
        code, permanent = "UNREGISTERED", True
    elif isinstance(exc, messaging.SenderIdMismatchError):
        code, permanent = "SENDER_ID_MISMATCH", True
    elif _is_bad_token_argument(exc):
        code, permanent = "INVALID_ARGUMENT", True
    else:
        code, permanent = exc.code, False

    response = getattr(exc, "http_response", None)
    return FCMSendError(
        str(exc) or "FCM send failed",
        code=code,
        status_code=getattr(response, "status_code", None),
        permanent=permanent,
    )


def build_message(
    token: str,
    title: str,
    body: str,
    data: dict[str, str] | None = None,
    image_url: str | None = None,
    icon_url: str | None = None,
) -> messaging.Message:
    """Build the SDK message for one registration token."""
    # FCM data payloads are string → string only
    string_data = {str(k): str(v) for k, v in (data or {}).items()}
    icon = icon_url or settings.PUSH_ICON_URL

    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body, image=image_url),
        data=string_data or None,
        webpush=messaging.WebpushConfig(
            headers={"Urgency": "high"},
            notification=messaging.WebpushNotification(
                icon=icon,
                badge=icon,
                data=string_data or None,
            ),
        ),
    )


def _service_account_info(project_id: str, client_email: str, private_key: str) -> dict:
    return {
        "type": "service_account",
        "project_id": project_id,
        "client_email": client_email,
        "private_key": private_key,
        "token_uri": GOOGLE_TOKEN_URI,
    }


class FCMClient:
    """Async facade over ``firebase_admin.messaging``."""

    def __init__(
        self,
        project_id: str | None = None,
        client_email: str | None = None,
        private_key: str | None = None,
        timeout: float | None = None,
        app: firebase_admin.App | None = None,
    ) -> None:
        self.project_id = project_id or settings.FIREBASE_PROJECT_ID
        self._owns_app = app is None
        if app is not None:
            self.app = app
            return

        client_email = client_email or settings.FIREBASE_CLIENT_EMAIL
        private_key = private_key or settings.FIREBASE_PRIVATE_KEY
        if not (self.project_id and client_email and private_key):
            raise FCMConfigError(
                "FIREBASE_PROJECT_ID, FIREBASE_CLIENT_EMAIL and FIREBASE_PRIVATE_KEY "
                "must all be set to send push notifications."
            )

        cred = credentials.Certificate(
            _service_account_info(self.project_id, client_email, private_key)
        )
        self.app = firebase_admin.initialize_app(
            cred,
            {
                "projectId": self.project_id,
                "httpTimeout": timeout or settings.FCM_TIMEOUT_SECONDS,
            },
            name=FIREBASE_APP_NAME,
        )

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
        image_url: str | None = None,
    ) -> str:
        """
        Send one message. Returns the FCM message name on success.

        Raises FCMSendError (check .permanent) for any provider or
        transport failure the SDK reports.
        """
        message = build_message(token, title, body, data=data, image_url=image_url)
        try:
            name = await asyncio.to_thread(messaging.send, message, app=self.app)
        except exceptions.FirebaseError as exc:
            raise classify_error(exc) from exc

        logger.debug("Notification sent successfully to token: %s", mask_token(token))
        return name

    async def aclose(self) -> None:
        if self._owns_app:
            firebase_admin.delete_app(self.app)
