"""Shared test helpers: in-memory SQLite identity database and test settings."""

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.security import hash_password
from app.models import Base, LinkedAccount, User, UserRole
from app.services.store import IdentityStore

TEST_SECRET = "test-secret-with-enough-bytes-for-hs256"

# One cheap hash shared by tests that do not care about the password itself.
_CACHED_HASHES: dict[str, str] = {}


def make_engine() -> Engine:
    """Fresh in-memory database with all identity tables and foreign keys enforced."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {"AUTH_SECRET": TEST_SECRET}
    values.update(overrides)
    return Settings(**values)


def password_hash(plain: str) -> str:
    if plain not in _CACHED_HASHES:
        _CACHED_HASHES[plain] = hash_password(plain)
    return _CACHED_HASHES[plain]


def add_user(
    db: Session,
    email: str,
    *,
    password: str | None = None,
    name: str | None = "Test User",
    image: str | None = None,
    role: UserRole = UserRole.USER,
    is_active: bool | None = True,
) -> User:
    """Insert a user row directly (bypassing normalization) so tests can seed any casing."""
    user = User(
        email=email,
        name=name,
        password=password_hash(password) if password else None,
        image=image,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def count_users(db: Session) -> int:
    return db.execute(select(func.count()).select_from(User)).scalar_one()


def count_accounts(db: Session, provider: str | None = None) -> int:
    query = select(func.count()).select_from(LinkedAccount)
    if provider is not None:
        query = query.where(LinkedAccount.provider == provider)
    return db.execute(query).scalar_one()


__all__ = [
    "IdentityStore",
    "TEST_SECRET",
    "add_user",
    "count_accounts",
    "count_users",
    "make_engine",
    "make_sessionmaker",
    "make_settings",
    "password_hash",
]
