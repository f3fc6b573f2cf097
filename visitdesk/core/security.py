import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from visitdesk.core.config import Settings, get_settings


class TokenExpired(ValueError):
    pass


@lru_cache
def _password_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(password: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return _password_context(settings.BCRYPT_ROUNDS).hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # The cost factor is read from the hash itself.
    return _password_context(get_settings().BCRYPT_ROUNDS).verify(plain_password, hashed_password)


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return _password_context(rounds).hash(secrets.token_urlsafe(24))


def dummy_password_hash(settings: Optional[Settings] = None) -> str:
    # A real hash at the configured cost so the comparison matches an existing account.
    settings = settings or get_settings()
    return _dummy_hash(settings.BCRYPT_ROUNDS)


def generate_password(length: int = 16) -> str:
    return secrets.token_urlsafe(length)[:length]


def create_access_token(
    subject: str,
    role: str,
    username: str,
    email: str,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: Dict[str, Any] = {
        "sub": subject,
        "type": "access",
        "role": role,
        "username": username,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token expired") from exc
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
