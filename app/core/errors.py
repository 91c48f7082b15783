"""
Closed error taxonomy shared by every feature.

Each error is an HTTPException so FastAPI maps it to a status code, and it
carries a stable ``code`` clients can branch on independently of the message.
"""
from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for all domain errors."""
    code: str = "INTERNAL_ERROR"
    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=message or self.default_message,
            headers=headers,
        )

    @property
    def message(self) -> str:
        return str(self.detail)


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    code = "CONFLICT"
    status_code_default = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class BadRequestError(AppError):
    code = "BAD_REQUEST"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"

    def __init__(self, message: str | None = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})
