import logging
import datetime
from typing import NamedTuple, Optional
import bcrypt
import jwt
from simpus.configs import JWT_SECRET, JWT_ALGORITHM, TOKEN_TTL
from simpus.core.policy import Role

logger = logging.getLogger(__name__)

ISSUER = "simpus"


class Identity(NamedTuple):
    user_id: str
    username: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_token(user_id: str, username: str, role, ttl: int = TOKEN_TTL) -> str:
    """Returns a signed token carrying the caller's identity."""
    now = datetime.datetime.now(datetime.timezone.utc)
    claims = {
        "sub": user_id,
        "username": username,
        "role": Role(role).value,
        "iss": ISSUER,
        "iat": now,
        "nbf": now,
        "exp": now + datetime.timedelta(seconds=ttl),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Identity]:
    """Verifies a token and returns its Identity, or None if it is invalid."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], issuer=ISSUER)
        return Identity(claims["sub"], claims["username"], Role(claims["role"]))
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        logger.info(f"Rejected token: {e}")
        return None


def token_from_header(auth_header: Optional[str]) -> Optional[str]:
    if auth_header:
        parts = auth_header.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return None
