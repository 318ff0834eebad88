"""Application error types translated to JSON responses by the app factory."""

from fastapi import status


class AppError(Exception):
    """A business-rule failure carrying the HTTP status it maps to."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class QueryValidationError(AppError):
    """Raised when list query parameters cannot be turned into a query plan."""

    def __init__(self, message: str) -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, message)
