"""ORM model for canonical user identities."""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, String, Text, func

from app.models.base import Base


class UserRole(str, enum.Enum):
    """Roles stored in users.role (PostgreSQL enum type "role")."""

    ADMIN = "admin"
    USER = "user"
    PREMIUM_USER = "premium_user"


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    One row per person, whichever way they sign in.

    email is stored lower-cased and is unique. password is null for
    OAuth-only users. is_active null means active; only False deactivates.
    """

    __tablename__ = "users"

    id = Column(String(255), primary_key=True, default=_new_user_id)
    name = Column(Text, nullable=True)
    email = Column(String(320), nullable=False, unique=True, index=True)
    email_verified = Column("emailVerified", DateTime(timezone=True), nullable=True)
    password = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    role = Column(
        Enum(
            UserRole,
            name="role",
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=UserRole.USER,
        server_default=UserRole.USER.value,
    )
    is_active = Column("isActive", Boolean, nullable=True)
    created_at = Column(
        "createdAt",
        DateTime(timezone=True),
        nullable=True,
        server_default=func.now(),
    )
    updated_at = Column(
        "updatedAt",
        DateTime(timezone=True),
        nullable=True,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def active(self) -> bool:
        return self.is_active is not False


# Case-insensitive uniqueness, and the index used by the lower(email) lookup.
Index("uq_users_email_lower", func.lower(User.email), unique=True)
