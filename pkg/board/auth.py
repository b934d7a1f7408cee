"""
Credential handling: password hashes and bearer tokens.

The rest of the board only consumes ``authenticate(token) -> principal``;
the principal is the user id every store call is scoped by.
"""
import logging
from datetime import datetime, timedelta, timezone

from jose import jwt, JWTError
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import Unauthenticated
from .store import UserStore

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def issue_token(user_id: str, secret: str, ttl_hours: int = 24) -> str:
    """Sign a token whose subject is the user id."""
    exp = datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
    return jwt.encode({"sub": user_id, "exp": exp}, secret, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str, secret: str) -> str:
    """Return the user id inside a valid token, or raise Unauthenticated."""
    try:
        payload = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token rejected: {e}")
        raise Unauthenticated("Not authorized, token failed") from e
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Not authorized, token failed")
    return user_id


def authenticate(token: str, secret: str, users: UserStore) -> str:
    """Resolve a bearer token to a principal (user id)."""
    if not token:
        raise Unauthenticated("Not authorized, no token")
    user_id = decode_token(token, secret)
    if users.find(user_id) is None:
        raise Unauthenticated("User not found")
    return user_id


def login(email: str, password: str, users: UserStore):
    """Check credentials; returns the User or raises Unauthenticated."""
    user = users.find_by_email(email)
    if user is None or not verify_password(user.password_hash, password):
        logger.warning(f"Failed login for {email}")
        raise Unauthenticated("Invalid credentials")
    return user
