from __future__ import annotations

from typing import Any


class InkwellError(Exception):
    """Base for errors the web layer maps onto HTTP responses."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message)
        self.message = message
        self.metadata = metadata

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.metadata}


class ValidationError(InkwellError):
    status_code = 422
    code = "validation_error"


class BlendInputError(ValidationError):
    code = "blend_input_error"


class ResourceNotFoundError(InkwellError):
    status_code = 404
    code = "not_found"


class AuthorizationError(InkwellError):
    status_code = 403
    code = "authorization_error"

    def __init__(self, message: str, *, authenticated: bool = True, **metadata: Any) -> None:
        super().__init__(message, **metadata)
        if not authenticated:
            self.status_code = 401


class QuotaExceededError(InkwellError):
    status_code = 429
    code = "quota_exceeded"

    def __init__(self, message: str, *, limit: int, used: int, quota: str) -> None:
        super().__init__(message, limit=limit, used=used, quota=quota, upgrade_required=True)
        self.limit = limit
        self.used = used
        self.quota = quota


class PartialContextFetchError(InkwellError):
    """One auxiliary context source failed; absorbed as a bundle warning."""

    code = "partial_context"

    def __init__(self, source: str, reason: str, *, timed_out: bool = False) -> None:
        super().__init__(f"{source} could not be loaded: {reason}", source=source, timed_out=timed_out)
        self.source = source
        self.reason = reason
        self.timed_out = timed_out


class UpstreamModelError(InkwellError):
    status_code = 502
    code = "upstream_model_error"

    def __init__(
        self,
        message: str,
        *,
        model: str,
        retryable: bool = True,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(message, model=model, retryable=retryable)
        self.model = model
        self.retryable = retryable
        self.correlation_id = correlation_id

    def to_detail(self) -> dict[str, Any]:
        # Upstream failure text stays in logs; callers only get the correlation id.
        return {
            "code": self.code,
            "message": "AI generation failed. Please retry.",
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }
