"""Password hashing and signed bearer tokens."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any

import bcrypt

from rules.errors import AuthError

MIN_PASSWORD_LENGTH = 8
_TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_token(
    secret: str,
    user_id: str,
    ttl_seconds: int,
    now: float | None = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    payload = {"user_id": user_id, "iat": issued_at, "exp": issued_at + ttl_seconds}
    signing_input = f"{_encode(_TOKEN_HEADER)}.{_encode(payload)}"
    return f"{signing_input}.{_sign(secret, signing_input)}"


def verify_token(secret: str, token: str, now: float | None = None) -> str:
    """Return the user id carried by ``token`` or raise ``AuthError``."""
    parts = (token or "").split(".")
    if len(parts) != 3:
        raise AuthError()
    signing_input = f"{parts[0]}.{parts[1]}"
    if not hmac.compare_digest(_sign(secret, signing_input), parts[2]):
        raise AuthError()
    try:
        payload = json.loads(_b64decode(parts[1]))
    except ValueError as exc:
        raise AuthError() from exc
    if not isinstance(payload, dict):
        raise AuthError()

    current = now if now is not None else time.time()
    exp = payload.get("exp")
    user_id = payload.get("user_id")
    if not isinstance(exp, int) or exp <= current:
        raise AuthError("token_expired")
    if not isinstance(user_id, str) or not user_id:
        raise AuthError()
    return user_id


def parse_bearer(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError()
    return token.strip()


def _encode(data: dict[str, Any]) -> str:
    raw = json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return _b64encode(raw)


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256
    ).digest()
    return _b64encode(digest)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)
