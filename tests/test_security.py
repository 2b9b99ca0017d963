# tests/test_security.py
from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from app.core.config import settings
from app.core.security import create_user_token, hash_password, user_id_from_token, verify_password


def test_password_hash_verifies_only_the_original_password():
    stored = hash_password("s3cret")
    assert stored != "s3cret"
    assert stored.startswith("$pbkdf2-sha256$")
    assert verify_password("s3cret", stored)
    assert not verify_password("wrong", stored)


def test_token_carries_the_user_id():
    token = create_user_token("user-42")
    assert user_id_from_token(token) == "user-42"
    assert jwt.get_unverified_claims(token)["sub"] == "user-42"


def test_expired_token_is_rejected():
    token = create_user_token("user-42", expires_delta=timedelta(seconds=-5))
    with pytest.raises(HTTPException) as exc_info:
        user_id_from_token(token)
    assert exc_info.value.status_code == 401


@pytest.mark.parametrize("token", [
    "not-a-jwt",
    jwt.encode({"sub": "user-42"}, "some-other-key", algorithm="HS256"),
    jwt.encode({"name": "no subject"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM),
])
def test_unusable_tokens_are_rejected(token):
    with pytest.raises(HTTPException) as exc_info:
        user_id_from_token(token)
    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}
