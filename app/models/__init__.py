"""SQLAlchemy ORM models."""

from app.models.account import LinkedAccount
from app.models.base import Base
from app.models.session import AuthSession, VerificationToken
from app.models.user import User, UserRole

__all__ = [
    "AuthSession",
    "Base",
    "LinkedAccount",
    "User",
    "UserRole",
    "VerificationToken",
]
