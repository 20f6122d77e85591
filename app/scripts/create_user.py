"""
Create a credentials user (e.g. first admin). Run from project root:
  python -m app.scripts.create_user EMAIL PASSWORD [role] [--name NAME]
Example:
  python -m app.scripts.create_user admin@example.com your-secure-password admin
"""
import argparse
import logging
import sys

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.security import hash_password
from app.models import UserRole
from app.schemas.auth import EMAIL_PATTERN
from app.services.store import ConflictError, IdentityStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Create a user with an email and password.")
    parser.add_argument("email", help="Email address (stored lower-cased)")
    parser.add_argument(
        "password",
        help=f"Password ({settings.PASSWORD_MIN_LEN}-{settings.PASSWORD_MAX_LEN} chars)",
    )
    parser.add_argument(
        "role",
        nargs="?",
        default=UserRole.USER.value,
        choices=[r.value for r in UserRole],
    )
    parser.add_argument("--name", default=None, help="Display name (defaults to the email's local part)")
    args = parser.parse_args(argv)

    email = args.email.strip()
    if not EMAIL_PATTERN.match(email):
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not (settings.PASSWORD_MIN_LEN <= len(args.password) <= settings.PASSWORD_MAX_LEN):
        print(
            f"Password must be {settings.PASSWORD_MIN_LEN}-{settings.PASSWORD_MAX_LEN} characters.",
            file=sys.stderr,
        )
        return 1

    db = SessionLocal()
    try:
        store = IdentityStore(db)
        try:
            user = store.insert_user(
                email=email,
                name=args.name or email.split("@")[0],
                password_hash=hash_password(args.password),
                role=UserRole(args.role),
                is_active=True,
            )
        except ConflictError:
            print(f"User '{email}' already exists.", file=sys.stderr)
            return 1
        logger.info("Created user %s with role %s", user.id, args.role)
        print(f"Created user '{user.email}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
