from typing import Optional


class TrackItError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self, message: Optional[str] = None, errors: Optional[list[dict]] = None
    ) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": False, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationError(TrackItError, ValueError):
    status_code = 400
    default_message = "Validation failed"


class UnauthorizedError(TrackItError):
    status_code = 401
    default_message = "Not authorized"


class NotFoundError(TrackItError, ValueError):
    status_code = 404
    default_message = "Not found"


class ConflictError(TrackItError, ValueError):
    status_code = 409
    default_message = "Conflict"


class RateLimitError(TrackItError):
    status_code = 429
    default_message = "Too many requests, please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class InternalError(TrackItError):
    pass
