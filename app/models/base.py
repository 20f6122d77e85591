"""SQLAlchemy declarative Base shared by the identity tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for users, accounts, sessions and verification tokens."""

    pass
