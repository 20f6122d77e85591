"""Identity store: the only code that reads or writes users and accounts.

Emails are normalized at write time, and the unique index on lower(email)
enforces case-insensitive uniqueness and serves the email lookup. Unique violations surface as
ConflictError; the database, not an application lock, decides concurrent
inserts.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import FlushError

from app.core.security import normalize_email
from app.models import LinkedAccount, User, UserRole
from app.schemas.identity import OAuthTokens

logger = logging.getLogger(__name__)


class ConflictError(Exception):
    """Raised when an insert violates a unique constraint (duplicate email or linked account)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class IdentityStore:
    """Adapter over one SQLAlchemy session (one request)."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # Users -----------------------------------------------------------------

    def find_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup; tolerates rows written before emails were normalized."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.db.execute(
            select(User).where(func.lower(User.email) == normalized).limit(1)
        ).scalar_one_or_none()

    def find_user_by_id(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def list_users(self) -> list[User]:
        return list(self.db.execute(select(User).order_by(User.created_at, User.id)).scalars())

    def _new_user(
        self,
        *,
        email: str,
        name: str | None,
        password_hash: str | None,
        image: str | None,
        role: UserRole,
        is_active: bool | None,
        email_verified: datetime | None,
    ) -> User:
        return User(
            email=normalize_email(email),
            name=name,
            password=password_hash,
            image=image,
            role=role,
            is_active=is_active,
            email_verified=email_verified,
        )

    def insert_user(
        self,
        *,
        email: str,
        name: str | None = None,
        password_hash: str | None = None,
        image: str | None = None,
        role: UserRole = UserRole.USER,
        is_active: bool | None = True,
        email_verified: datetime | None = None,
    ) -> User:
        """Insert a user. Raises ConflictError if the normalized email already exists."""
        user = self._new_user(
            email=email,
            name=name,
            password_hash=password_hash,
            image=image,
            role=role,
            is_active=is_active,
            email_verified=email_verified,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except (IntegrityError, FlushError) as e:
            self.db.rollback()
            raise ConflictError("User with this email already exists", cause=e) from e
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(user)
        return user

    # Linked accounts -------------------------------------------------------

    def find_linked_account(
        self, user_id: str, provider: str, provider_account_id: str
    ) -> LinkedAccount | None:
        return self.db.execute(
            select(LinkedAccount)
            .where(
                LinkedAccount.user_id == user_id,
                LinkedAccount.provider == provider,
                LinkedAccount.provider_account_id == provider_account_id,
            )
            .limit(1)
        ).scalar_one_or_none()

    def find_account_by_provider(
        self, provider: str, provider_account_id: str
    ) -> LinkedAccount | None:
        """Global lookup by the (provider, provider_account_id) primary key."""
        return self.db.get(LinkedAccount, (provider, provider_account_id))

    def list_accounts_for_user(self, user_id: str) -> list[LinkedAccount]:
        return list(
            self.db.execute(
                select(LinkedAccount)
                .where(LinkedAccount.user_id == user_id)
                .order_by(LinkedAccount.provider)
            ).scalars()
        )

    @staticmethod
    def _new_account(
        *,
        user_id: str,
        provider: str,
        provider_account_id: str,
        account_type: str,
        tokens: OAuthTokens,
        expires_at: int | None,
    ) -> LinkedAccount:
        return LinkedAccount(
            user_id=user_id,
            type=account_type,
            provider=provider,
            provider_account_id=provider_account_id,
            refresh_token=tokens.refresh_token,
            access_token=tokens.access_token,
            expires_at=expires_at,
            token_type=tokens.token_type,
            scope=tokens.scope,
            id_token=tokens.id_token,
            session_state=tokens.session_state,
        )

    def insert_linked_account(
        self,
        *,
        user_id: str,
        provider: str,
        provider_account_id: str,
        account_type: str = "oauth",
        tokens: OAuthTokens | None = None,
        expires_at: int | None = None,
        backfill_image: str | None = None,
    ) -> LinkedAccount:
        """
        Bind a provider identity to an existing user.

        backfill_image is written to User.image in the same transaction when the
        user has none. Raises ConflictError if (provider, provider_account_id) is
        already linked to anyone; nothing is written in that case.
        """
        tokens = tokens or OAuthTokens()
        account = self._new_account(
            user_id=user_id,
            provider=provider,
            provider_account_id=provider_account_id,
            account_type=account_type,
            tokens=tokens,
            expires_at=expires_at if expires_at is not None else tokens.expires_at,
        )
        self.db.add(account)
        if backfill_image:
            user = self.db.get(User, user_id)
            if user is not None and not user.image:
                user.image = backfill_image
        try:
            self.db.commit()
        except (IntegrityError, FlushError) as e:
            self.db.rollback()
            raise ConflictError("Provider account is already linked", cause=e) from e
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return account

    def create_user_with_account(
        self,
        *,
        email: str,
        name: str | None,
        image: str | None,
        provider: str,
        provider_account_id: str,
        account_type: str = "oauth",
        tokens: OAuthTokens | None = None,
        email_verified: datetime | None = None,
    ) -> User:
        """
        Create a user and its first linked account in one transaction.

        Either both rows are committed or neither is. Raises ConflictError when the
        email or the provider identity is already taken.
        """
        tokens = tokens or OAuthTokens()
        user = self._new_user(
            email=email,
            name=name,
            password_hash=None,
            image=image,
            role=UserRole.USER,
            is_active=True,
            email_verified=email_verified,
        )
        try:
            self.db.add(user)
            self.db.flush()
            self.db.add(
                self._new_account(
                    user_id=user.id,
                    provider=provider,
                    provider_account_id=provider_account_id,
                    account_type=account_type,
                    tokens=tokens,
                    expires_at=tokens.expires_at,
                )
            )
            self.db.commit()
        except (IntegrityError, FlushError) as e:
            self.db.rollback()
            raise ConflictError("User or provider account already exists", cause=e) from e
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(user)
        logger.info("Created user %s with %s account", user.id, provider)
        return user
