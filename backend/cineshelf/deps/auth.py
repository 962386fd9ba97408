"""
Auth dependencies — shared across all protected endpoints.

Usage in any route:
    from cineshelf.deps.auth import get_current_user
    from cineshelf.db.models import User

    @router.get("/protected")
    def protected(user: User = Depends(get_current_user)):
        ...
"""
import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from cineshelf.core.config import settings
from cineshelf.core.security import decode_id_token, uid_from_claims
from cineshelf.db.models import User
from cineshelf.db.session import get_db
from cineshelf.services.user_service import get_or_create_user

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Verify the bearer ID token and return the corresponding User.

    The user row is created on first sight. Raises 401 on a missing,
    invalid or expired token.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Unauthorized: No token provided")

    claims = decode_id_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Unauthorized: Invalid token")

    uid = uid_from_claims(claims)
    if uid is None:
        raise _unauthorized("Unauthorized: Invalid token")

    return get_or_create_user(db, uid, claims)


def require_internal_key(
    x_internal_key: str | None = Header(default=None),
) -> None:
    """
    Guard for service-to-service endpoints.

    Open when INTERNAL_API_KEY is unset (development).
    """
    expected = settings.INTERNAL_API_KEY
    if not expected:
        return
    if not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid internal key",
        )
