"""Adapter-compatibility tables. Not read or written by the JWT session flow."""

from sqlalchemy import Column, DateTime, ForeignKey, PrimaryKeyConstraint, String, Text

from app.models.base import Base


class AuthSession(Base):
    """Database-backed session row (database session strategy only)."""

    __tablename__ = "sessions"

    session_token = Column("sessionToken", Text, primary_key=True)
    user_id = Column(
        "userId",
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    expires = Column(DateTime(timezone=True), nullable=False)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"
    __table_args__ = (
        PrimaryKeyConstraint(
            "identifier",
            "token",
            name="verification_tokens_identifier_token_pk",
        ),
    )

    identifier = Column(Text, nullable=False)
    token = Column(Text, nullable=False)
    expires = Column(DateTime(timezone=True), nullable=False)
