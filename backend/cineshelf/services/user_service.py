"""
User rows keyed by identity-provider uid.

Users are provisioned lazily: the first authenticated request (or the
first notification addressed to a uid) creates the row.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cineshelf.db.models import User


class UserNotFoundError(Exception):
    """Raised when the target user does not exist."""


def get_user(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def get_user_or_raise(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def get_or_create_user(db: Session, user_id: str, claims: dict | None = None) -> User:
    """
    Return the user for *user_id*, inserting a row on first sight.

    *claims* (decoded ID token) seed display_name / email / avatar_url.
    """
    user = get_user(db, user_id)
    if user is not None:
        return user

    claims = claims or {}
    user = User(
        id=user_id,
        email=claims.get("email"),
        display_name=claims.get("name"),
        avatar_url=claims.get("picture"),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request provisioned the same uid first
        db.rollback()
        return get_user_or_raise(db, user_id)
    db.refresh(user)
    return user
