"""Credentials registration: create a user with a hashed password."""

import logging
from typing import TYPE_CHECKING

from app.core.security import hash_password
from app.models import User
from app.schemas.auth import RegisterRequest
from app.services.store import ConflictError, IdentityStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL_MESSAGE = "User with this email already exists"


class RegistrationError(Exception):
    """Raised for rejected registrations (invalid password length, duplicate email)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def register_user(store: IdentityStore, body: RegisterRequest, settings: "Settings") -> User:
    """
    Create an active credentials user. The email is stored normalized.

    The pre-check gives a clean message in the common case; the unique index
    still decides when two registrations race.
    """
    if len(body.password) < settings.PASSWORD_MIN_LEN:
        raise RegistrationError(
            f"Password must be at least {settings.PASSWORD_MIN_LEN} characters long"
        )
    if len(body.password) > settings.PASSWORD_MAX_LEN:
        raise RegistrationError(
            f"Password must be less than {settings.PASSWORD_MAX_LEN} characters"
        )
    if store.find_user_by_email(body.email) is not None:
        raise RegistrationError(DUPLICATE_EMAIL_MESSAGE)

    try:
        user = store.insert_user(
            email=body.email,
            name=body.name,
            password_hash=hash_password(body.password),
            image=body.image,
            is_active=True,
        )
    except ConflictError as e:
        raise RegistrationError(DUPLICATE_EMAIL_MESSAGE) from e
    logger.info("Registered user %s", user.id)
    return user
