from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext
from app.core.config import settings

# Hashes stored in users.password_hash
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Check a login password against a user's stored hash"""
    return pwd_context.verify(plain_password, password_hash)


def create_user_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a bearer token for a user

    The token's ``sub`` claim is the user id; usernames never appear in it,
    so renaming a user keeps existing tokens valid.

    Args:
        user_id: Id of the authenticated user
        expires_delta: Lifetime, ACCESS_TOKEN_EXPIRE_MINUTES when omitted

    Returns:
        Encoded JWT
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": user_id, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def user_id_from_token(token: str) -> str:
    """
    Verify a bearer token and return the user id it was issued for

    Raises:
        HTTPException: 401 if the token is malformed, expired, signed with
            another key or has no ``sub`` claim
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _credentials_error()

    user_id = payload.get("sub")
    if not user_id:
        raise _credentials_error()
    return user_id
