from __future__ import annotations

from typing import Any, Optional


class ApiError(Exception):
    """Domain failure rendered as a ``{success: false, error, code}`` envelope."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    def to_body(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code, **self.extra}


class ValidationFailed(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(ApiError):
    status_code = 403
    code = "ACCESS_DENIED"


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class LLMError(RuntimeError):
    """The chat-completion endpoint failed or returned something unusable."""
