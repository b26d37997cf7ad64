from datetime import datetime, timedelta
from typing import Optional
import uuid

from jose import JWTError, jwt

from quorumgate.core.config import get_settings

settings = get_settings()


def create_access_token(
    user_id: str,
    expires_delta: Optional[timedelta] = None,
    *,
    secret_key: Optional[str] = None,
) -> str:
    """Create a JWT access token whose subject is the user id."""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "jti": str(uuid.uuid4()),
        "type": "access"
    }
    return jwt.encode(to_encode, secret_key or settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, *, secret_key: Optional[str] = None) -> Optional[str]:
    """Decode and validate a JWT access token. Returns the user id if valid."""
    try:
        payload = jwt.decode(token, secret_key or settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None
    return payload.get("sub")
