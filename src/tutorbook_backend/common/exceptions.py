"""
Application-specific exceptions.

Every business error carries a kind (which decides the HTTP status) and a
short machine-readable code next to the human message.
"""
import enum
from fastapi import HTTPException, status


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL"


_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(HTTPException):
    """Base class for typed business errors raised by the services."""
    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(status_code=_STATUS_BY_KIND[self.kind], detail=message)

    def __str__(self) -> str:
        return f"{self.kind.value}[{self.code}]: {self.message}"


class NotFoundError(AppError):
    """Entity absent, or not owned by the caller. The two are not distinguished."""
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    """A state rule was violated (overlap, duplicate membership, locked session...)."""
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class InputValidationError(AppError):
    """Malformed business input that passed schema validation."""
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class InternalError(AppError):
    """A row could not be read back right after it was written."""
    kind = ErrorKind.INTERNAL
    default_code = "INTERNAL_ERROR"
