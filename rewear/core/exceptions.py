from fastapi import status


class AppError(Exception):
    """Base class for errors surfaced to API callers.

    Every error carries a stable machine-readable ``kind`` and a
    human-readable ``detail``.
    """

    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class NotFoundError(AppError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(AppError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(AppError):
    kind = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AppError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class ConcurrencyError(ConflictError):
    """Raised by a repository when a conditional write lost a race."""


class InternalError(AppError):
    pass
