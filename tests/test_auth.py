import pytest

from app.auth import create_token, hash_password, parse_bearer, verify_password, verify_token
from rules.errors import AuthError


def test_password_hash_round_trip() -> None:
    hashed = hash_password("correct horse battery")
    assert hashed != "correct horse battery"
    assert verify_password("correct horse battery", hashed) is True
    assert verify_password("wrong password", hashed) is False
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_token_carries_user_id() -> None:
    token = create_token("secret", "user-1", ttl_seconds=60, now=1_000)
    assert token.count(".") == 2
    assert verify_token("secret", token, now=1_030) == "user-1"


def test_expired_token_is_rejected() -> None:
    token = create_token("secret", "user-1", ttl_seconds=60, now=1_000)
    with pytest.raises(AuthError) as excinfo:
        verify_token("secret", token, now=1_060)
    assert excinfo.value.reason == "token_expired"


def test_tampered_or_foreign_token_is_rejected() -> None:
    token = create_token("secret", "user-1", ttl_seconds=60, now=1_000)
    header, payload, signature = token.split(".")
    forged = create_token("secret", "user-2", ttl_seconds=60, now=1_000).split(".")[1]

    with pytest.raises(AuthError):
        verify_token("secret", f"{header}.{forged}.{signature}", now=1_010)
    with pytest.raises(AuthError):
        verify_token("other-secret", token, now=1_010)
    with pytest.raises(AuthError):
        verify_token("secret", "garbage", now=1_010)


def test_parse_bearer() -> None:
    assert parse_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
    with pytest.raises(AuthError):
        parse_bearer(None)
    with pytest.raises(AuthError):
        parse_bearer("Basic abc")
