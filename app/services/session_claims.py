"""Session claims: mint, refresh and project the claims carried by the signed session token.

Claims are a projection of the User row. Every read re-derives name, email,
role and picture from the live row, so role changes and deactivation take
effect within one refresh. The token's absolute expiry is fixed at sign-in
and never extended; re-signing (to carry fresh claims) happens at most once
per SESSION_UPDATE_AGE_SEC unless the client asks for an update.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import jwt
from pydantic import ValidationError

from app.core.security import decode_token, encode_token, utc_timestamp
from app.models import UserRole
from app.schemas.auth import SessionClaims, SessionView
from app.schemas.identity import UserIdentity
from app.services.store import IdentityStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

SessionTrigger = Literal["signIn", "update"]

# Fields a client may change through an explicit update; sub, role and timestamps are not among them.
PATCHABLE_CLAIMS = frozenset({"name", "email", "picture"})


class InvalidSessionError(Exception):
    """Raised when a token is malformed, expired, or its backing user no longer exists."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class SessionRead:
    """Outcome of reading a session token: current claims, plus a new token if re-signed."""

    claims: SessionClaims
    token: str | None = None


class SessionClaimsBuilder:
    def __init__(self, store: IdentityStore, settings: "Settings") -> None:
        self.store = store
        self.settings = settings

    def mint(self, identity: UserIdentity, now: int | None = None) -> SessionClaims:
        """Claims for a fresh sign-in. Role comes from the live row, not from the identity."""
        now = now if now is not None else utc_timestamp()
        claims = SessionClaims(
            sub=identity.id,
            name=identity.name,
            email=identity.email,
            picture=identity.image,
            role=None,
            iat=now,
            exp=now + self.settings.SESSION_MAX_AGE_SEC,
            auth_time=now,
        )
        return self._rederive(claims) or claims

    def refresh(
        self,
        claims: SessionClaims,
        trigger: SessionTrigger | None = None,
        patch: dict[str, Any] | None = None,
    ) -> SessionClaims | None:
        """
        Re-derive claims from the current User row.

        With trigger "update", the patch is merged first (patchable fields only).
        Returns None when the backing user is gone or deactivated; the session is invalid.
        """
        if trigger == "update" and patch:
            changes = {
                k: v for k, v in patch.items() if k in PATCHABLE_CLAIMS and v is not None
            }
            if changes:
                claims = claims.model_copy(update=changes)
        return self._rederive(claims)

    def _rederive(self, claims: SessionClaims) -> SessionClaims | None:
        user = self.store.find_user_by_id(claims.sub)
        if user is None:
            logger.info("Session subject %s no longer exists", claims.sub)
            return None
        if not user.active:
            logger.info("Session subject %s is deactivated", claims.sub)
            return None
        return claims.model_copy(
            update={
                "name": user.name,
                "email": user.email,
                "role": UserRole(user.role),
                "picture": user.image,
            }
        )

    @staticmethod
    def project(claims: SessionClaims) -> SessionView:
        """Presentation view: no timestamps; role falls back to the least-privileged value."""
        return SessionView(
            id=claims.sub,
            name=claims.name,
            email=claims.email,
            image=claims.picture,
            role=claims.role or UserRole.USER,
        )

    # Token encoding ------------------------------------------------------------

    def encode(self, claims: SessionClaims) -> str:
        return encode_token(
            claims.model_dump(mode="json"),
            self.settings.AUTH_SECRET.get_secret_value(),
            self.settings.JWT_ALGORITHM,
        )

    def decode(self, token: str) -> SessionClaims:
        """Verify signature and expiry. Raises InvalidSessionError."""
        try:
            payload = decode_token(
                token,
                self.settings.AUTH_SECRET.get_secret_value(),
                self.settings.JWT_ALGORITHM,
            )
        except jwt.ExpiredSignatureError:
            raise InvalidSessionError("Session expired")
        except jwt.PyJWTError:
            raise InvalidSessionError("Invalid session token")
        payload.setdefault("auth_time", payload.get("iat"))
        try:
            return SessionClaims.model_validate(payload)
        except ValidationError:
            raise InvalidSessionError("Invalid session token payload")

    def issue(self, identity: UserIdentity) -> tuple[SessionClaims, str]:
        """Mint claims for a resolved identity and sign them."""
        claims = self.mint(identity)
        return claims, self.encode(claims)

    def read(
        self,
        token: str,
        trigger: SessionTrigger | None = None,
        patch: dict[str, Any] | None = None,
        now: int | None = None,
    ) -> SessionRead:
        """
        Validate a token and refresh its claims from the live user row.

        A new token is signed when the current one is older than the update age or
        when the client requested an update; exp is carried over unchanged.
        """
        claims = self.decode(token)
        refreshed = self.refresh(claims, trigger=trigger, patch=patch)
        if refreshed is None:
            raise InvalidSessionError("User not found")

        now = now if now is not None else utc_timestamp()
        if trigger == "update" or now - claims.iat >= self.settings.SESSION_UPDATE_AGE_SEC:
            refreshed = refreshed.model_copy(update={"iat": now})
            return SessionRead(claims=refreshed, token=self.encode(refreshed))
        return SessionRead(claims=refreshed)
