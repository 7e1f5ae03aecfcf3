"""
Password hashing and signed bearer tokens.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from medtrack import config
from medtrack.database.models import UserRole
from medtrack.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

if config.JWT_SECRET == config.DEFAULT_JWT_SECRET:
    logger.warning("JWT_SECRET is not set; using the development signing key")


@dataclass(frozen=True)
class Principal:
    """The caller identity carried by a verified token."""
    user_id: int
    role: UserRole

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles


# ==================== PASSWORDS ====================

def hash_password(password: str) -> str:
    """bcrypt hash with a per-hash salt and the configured cost."""
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


# ==================== TOKENS ====================

def create_access_token(user_id: int, role: UserRole) -> str:
    """Signed token carrying sub, role, iat and exp."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=config.JWT_TTL_SECONDS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Principal:
    """Verify signature and expiry and return the caller identity."""
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")

    try:
        return Principal(user_id=int(payload["sub"]), role=UserRole(payload.get("role")))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token payload")
