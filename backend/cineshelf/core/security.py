"""
ID-token verification for bearer authentication.

Tokens are issued by the identity provider. In production they are RS256
and verified against its published JWKS; in development (no AUTH_JWKS_URL)
they are HS256 tokens signed with SECRET_KEY, which create_id_token mints.
Never import DB models here — keep this layer pure.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from jose import JWTError, jwt

from cineshelf.core.config import settings

logger = logging.getLogger(__name__)

JWKS_TIMEOUT_SECONDS = 5.0


class _JWKSCache:
    """Fetches the provider's key set and keeps it for a while."""

    def __init__(self) -> None:
        self._keys: dict | None = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def get(self, url: str, max_age: int) -> dict:
        with self._lock:
            if self._keys is not None and time.monotonic() - self._fetched_at < max_age:
                return self._keys
            response = httpx.get(url, timeout=JWKS_TIMEOUT_SECONDS)
            response.raise_for_status()
            self._keys = response.json()
            self._fetched_at = time.monotonic()
            return self._keys

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0


jwks_cache = _JWKSCache()


# ── Token helpers ─────────────────────────────────────────────────────────────

def create_id_token(
    subject: Any,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """
    Mint an HS256 ID token for local development and tests.

    Args:
        subject: The user's uid.
        expires_delta: Token lifetime (default one hour).
        **claims: Extra claims such as ``name`` or ``email``.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    payload = {"sub": str(subject), "exp": expire, **claims}
    if settings.AUTH_AUDIENCE:
        payload.setdefault("aud", settings.AUTH_AUDIENCE)
    if settings.AUTH_ISSUER:
        payload.setdefault("iss", settings.AUTH_ISSUER)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_id_token(token: str) -> dict | None:
    """
    Verify an ID token and return its claims.
    Returns None on any error (expired, tampered, malformed, key fetch failure).
    """
    options = {"verify_aud": bool(settings.AUTH_AUDIENCE)}
    kwargs: dict[str, Any] = {}
    if settings.AUTH_AUDIENCE:
        kwargs["audience"] = settings.AUTH_AUDIENCE
    if settings.AUTH_ISSUER:
        kwargs["issuer"] = settings.AUTH_ISSUER

    try:
        if settings.AUTH_JWKS_URL:
            keys = jwks_cache.get(settings.AUTH_JWKS_URL, settings.AUTH_JWKS_CACHE_SECONDS)
            return jwt.decode(token, keys, algorithms=["RS256"], options=options, **kwargs)
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options=options,
            **kwargs,
        )
    except JWTError:
        return None
    except httpx.HTTPError:
        logger.exception("Could not fetch identity provider keys")
        return None


def uid_from_claims(claims: dict) -> str | None:
    """Firebase-style tokens carry the uid in both ``sub`` and ``user_id``."""
    uid = claims.get("sub") or claims.get("user_id")
    if not isinstance(uid, str) or not uid.strip():
        return None
    return uid.strip()
