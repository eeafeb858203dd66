from __future__ import annotations


class GameError(Exception):
    status_code = 500
    default_reason = "internal_error"

    def __init__(self, reason: str | None = None, detail: str | None = None) -> None:
        self.reason = reason or self.default_reason
        self.detail = detail
        super().__init__(detail or self.reason)


class ValidationError(GameError):
    status_code = 400
    default_reason = "invalid_request"


class AuthError(GameError):
    status_code = 401
    default_reason = "unauthorized"


class NotFoundError(GameError):
    status_code = 404
    default_reason = "not_found"


class InvalidStateError(GameError):
    status_code = 409
    default_reason = "invalid_status"


class RateLimitedError(GameError):
    status_code = 429
    default_reason = "rate_limited"


class UpstreamError(GameError):
    status_code = 500
    default_reason = "upstream_error"
