class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid."""


class BudgetAPIError(Exception):
    """Base for errors that map onto an HTTP response."""

    status_code = 500
    default_error = "Internal Server Error"

    def __init__(self, message: str, error: str | None = None):
        super().__init__(message)
        self.message = message
        self.error = error or self.default_error

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(BudgetAPIError):
    status_code = 400
    default_error = "Validation failed"


class AuthError(BudgetAPIError):
    status_code = 401
    default_error = "Unauthorized"

    # reason is one of: credentials, missing_header, bad_format,
    # bad_signature, expired, invalid
    def __init__(self, message: str, error: str | None = None, reason: str = "invalid"):
        super().__init__(message, error)
        self.reason = reason


class NotFoundError(BudgetAPIError):
    status_code = 404
    default_error = "Not Found"


class ConflictError(BudgetAPIError):
    status_code = 409
    default_error = "Conflict"


class StoreError(BudgetAPIError):
    status_code = 500
    default_error = "Database error"
