from typing import Any, Optional


class GatewayError(Exception):
    """Base for every error the gateway turns into a JSON response."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.error
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class InternalError(GatewayError):
    pass


# --- Request errors ---

class ValidationFailed(GatewayError):
    status_code = 400
    error = "Validation failed"

    def __init__(self, details: list[dict[str, Any]], error: Optional[str] = None):
        self.details = details
        if error:
            self.error = error
        super().__init__("; ".join(d["message"] for d in details) or self.error)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "details": self.details}


class PayloadTooLarge(GatewayError):
    status_code = 413
    error = "Payload too large"


class UnsupportedLanguage(GatewayError):
    status_code = 400
    error = "Unsupported language"

    def __init__(self, language: Any):
        self.language = language
        super().__init__(f"Unsupported language: {language}")


class AuthRequired(GatewayError):
    status_code = 401
    error = "Access token required"


class InvalidToken(GatewayError):
    status_code = 403
    error = "Invalid or expired token"


class RateLimited(GatewayError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, message: str, retry_after: str, retry_after_seconds: int, headers: Optional[dict[str, str]] = None):
        self.retry_after = retry_after
        self.retry_after_seconds = retry_after_seconds
        self.headers = headers or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "retryAfter": self.retry_after}


class QuotaExceeded(GatewayError):
    status_code = 429
    error = "Execution quota exceeded"
    code = "QUOTA_EXCEEDED"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "code": self.code, "message": self.message}


# --- Judging backend errors ---

class JudgeError(GatewayError):
    """The judging backend refused or failed a submission."""

    status_code = 502
    error = "Judging backend error"


class InvalidParameters(JudgeError):
    error = "Judging backend rejected the submission parameters"


class BackendAuthRequired(JudgeError):
    error = "Judging backend authentication failed"


class BackendForbidden(JudgeError):
    error = "Judging backend denied access"


class BackendRateLimited(JudgeError):
    status_code = 503
    error = "Judging backend rate limit reached"


class ServiceUnavailable(JudgeError):
    error = "Judging backend unavailable"


class UnknownBackendError(JudgeError):
    error = "Unknown judging backend error"


class BackendUnavailable(JudgeError):
    error = "Judging backend unreachable"


class BackendTimeout(JudgeError):
    status_code = 504
    error = "Judging backend timed out"


class MalformedResponse(JudgeError):
    error = "Malformed response from judging backend"
