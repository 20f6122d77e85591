"""Identity resolution: map an incoming sign-in to exactly one local user.

The resolver decides between creating, linking and reusing; OAuthSignIn
completes the decision (creating the user and its first account when needed)
and returns the identity that the session is minted from.
"""

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from app.core.security import normalize_email, utc_timestamp
from app.models import User
from app.schemas.identity import (
    AlreadyLinked,
    CredentialsAssertion,
    LinkedToExisting,
    OAuthAssertion,
    ProceedAsNewUser,
    Rejected,
    RejectionReason,
    ResolutionOutcome,
    SignInResult,
    UserIdentity,
)
from app.services.store import ConflictError, IdentityStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def _identity_from_user(user: User) -> UserIdentity:
    return UserIdentity(
        id=user.id,
        email=user.email,
        name=user.name,
        image=user.image,
        role=user.role,
    )


class IdentityResolver:
    """Decide which local user an assertion belongs to; link new provider identities to it."""

    def __init__(self, store: IdentityStore, settings: "Settings") -> None:
        self.store = store
        self.settings = settings

    def link_expiry(self, now: int | None = None) -> int:
        """
        expires_at persisted on a newly linked account.

        The refresh-token window is recorded rather than the access-token window;
        provider tokens are refreshed against the provider, not against this value.
        """
        now = now if now is not None else utc_timestamp()
        return now + self.settings.REFRESH_TOKEN_WINDOW_SEC

    def resolve(self, assertion: CredentialsAssertion | OAuthAssertion) -> ResolutionOutcome:
        if isinstance(assertion, CredentialsAssertion):
            # Already authenticated by the credential verifier; nothing to link.
            return ProceedAsNewUser()

        if not assertion.email:
            logger.warning(
                "Rejecting %s sign-in without email (account %s)",
                assertion.provider,
                assertion.provider_account_id,
            )
            return Rejected(reason=RejectionReason.MISSING_EMAIL)

        email = normalize_email(assertion.email)
        try:
            user = self.store.find_user_by_email(email)
        except SQLAlchemyError:
            logger.exception("User lookup failed during %s sign-in", assertion.provider)
            return Rejected(reason=RejectionReason.LINK_ERROR)

        if user is None:
            return ProceedAsNewUser()
        if not user.active:
            logger.info("%s sign-in refused for deactivated user %s", assertion.provider, user.id)
            return Rejected(reason=RejectionReason.DEACTIVATED)

        backfill = None
        if assertion.provider in self.settings.IMAGE_PROVIDERS and not user.image:
            backfill = assertion.image
        try:
            existing = self.store.find_linked_account(
                user.id, assertion.provider, assertion.provider_account_id
            )
            if existing is not None:
                logger.info("%s account already linked to user %s", assertion.provider, user.id)
                return AlreadyLinked(user_id=user.id)

            self.store.insert_linked_account(
                user_id=user.id,
                provider=assertion.provider,
                provider_account_id=assertion.provider_account_id,
                account_type=assertion.account_type,
                tokens=assertion.tokens,
                expires_at=self.link_expiry(),
                backfill_image=backfill,
            )
        except ConflictError:
            logger.warning(
                "%s account %s is already linked to another user; denying sign-in for %s",
                assertion.provider,
                assertion.provider_account_id,
                user.id,
            )
            return Rejected(reason=RejectionReason.DUPLICATE_ACCOUNT)
        except SQLAlchemyError:
            logger.exception("Error linking %s account to user %s", assertion.provider, user.id)
            return Rejected(reason=RejectionReason.LINK_ERROR)

        logger.info("Linked %s account to existing user %s", assertion.provider, user.id)
        return LinkedToExisting(user_id=user.id)


class OAuthSignIn:
    """Complete an OAuth sign-in: resolve, then create or load the user behind the outcome."""

    def __init__(self, store: IdentityStore, settings: "Settings") -> None:
        self.store = store
        self.resolver = IdentityResolver(store, settings)

    def _create_user(self, assertion: OAuthAssertion) -> SignInResult:
        # A provider identity that is already linked signs in as its owner, even if the
        # provider now reports a different email.
        owner_account = self.store.find_account_by_provider(
            assertion.provider, assertion.provider_account_id
        )
        if owner_account is not None:
            return self._load(AlreadyLinked(user_id=owner_account.user_id))

        try:
            user = self.store.create_user_with_account(
                email=assertion.email or "",
                name=assertion.name,
                image=assertion.image,
                provider=assertion.provider,
                provider_account_id=assertion.provider_account_id,
                account_type=assertion.account_type,
                tokens=assertion.tokens,
                email_verified=datetime.now(UTC),
            )
        except ConflictError:
            # Lost a race with a concurrent sign-in for the same email or identity.
            logger.warning(
                "Concurrent %s sign-in created the same user first; denying", assertion.provider
            )
            return SignInResult(outcome=Rejected(reason=RejectionReason.DUPLICATE_EMAIL))
        return SignInResult(outcome=ProceedAsNewUser(), identity=_identity_from_user(user))

    def _load(self, outcome: AlreadyLinked | LinkedToExisting) -> SignInResult:
        user = self.store.find_user_by_id(outcome.user_id)
        if user is None:
            return SignInResult(outcome=Rejected(reason=RejectionReason.LINK_ERROR))
        if not user.active:
            logger.info("OAuth sign-in refused for deactivated user %s", user.id)
            return SignInResult(outcome=Rejected(reason=RejectionReason.DEACTIVATED))
        return SignInResult(outcome=outcome, identity=_identity_from_user(user))

    def complete(self, assertion: OAuthAssertion) -> SignInResult:
        outcome = self.resolver.resolve(assertion)
        if isinstance(outcome, Rejected):
            return SignInResult(outcome=outcome)
        try:
            if isinstance(outcome, ProceedAsNewUser):
                return self._create_user(assertion)
            return self._load(outcome)
        except SQLAlchemyError:
            logger.exception("Error completing %s sign-in", assertion.provider)
            return SignInResult(outcome=Rejected(reason=RejectionReason.LINK_ERROR))
