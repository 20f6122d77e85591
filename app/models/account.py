"""ORM model for provider accounts linked to a user."""

from sqlalchemy import Column, ForeignKey, Integer, PrimaryKeyConstraint, String, Text

from app.models.base import Base


class LinkedAccount(Base):
    """
    An external (OAuth) identity bound to a User.

    (provider, provider_account_id) is the primary key, so one external
    identity can never belong to two users. Rows go away with their user.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        PrimaryKeyConstraint(
            "provider",
            "providerAccountId",
            name="accounts_provider_providerAccountId_pk",
        ),
    )

    user_id = Column(
        "userId",
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(64), nullable=False)
    provider = Column(String(64), nullable=False)
    provider_account_id = Column("providerAccountId", String(255), nullable=False)
    refresh_token = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)
    expires_at = Column(Integer, nullable=True)
    token_type = Column(String(64), nullable=True)
    scope = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    session_state = Column(Text, nullable=True)
