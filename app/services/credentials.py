"""Credential verifier: check an email/password pair against the stored bcrypt hash."""

import logging

from app.core.security import verify_password
from app.schemas.identity import UserIdentity, VerificationError, VerificationErrorKind
from app.services.store import IdentityStore

logger = logging.getLogger(__name__)


class CredentialVerifier:
    """Read-only; never returns or logs password material."""

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def verify(self, email: str, password: str) -> UserIdentity | VerificationError:
        """
        Return the user's identity projection, or a VerificationError whose kind says why.

        Order of checks: missing input, unknown email, no password set (OAuth-only
        account), deactivated account, wrong password.
        """
        if not email or not email.strip() or not password:
            return VerificationError(kind=VerificationErrorKind.VALIDATION)

        user = self.store.find_user_by_email(email)
        if user is None:
            return VerificationError(kind=VerificationErrorKind.NOT_FOUND)
        if not user.password:
            return VerificationError(kind=VerificationErrorKind.NO_PASSWORD_SET)
        if not user.active:
            logger.info("Credentials sign-in refused for deactivated user %s", user.id)
            return VerificationError(kind=VerificationErrorKind.DEACTIVATED)
        if not verify_password(password, user.password):
            return VerificationError(kind=VerificationErrorKind.INVALID_PASSWORD)

        return UserIdentity(
            id=user.id,
            email=user.email,
            name=user.name,
            image=user.image,
            role=user.role,
        )
