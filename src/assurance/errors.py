"""
Error taxonomy for the assurance layer.

Every AssuranceError maps to an HTTP status and a stable machine-readable
code; main.py installs one handler that renders them as
{"detail": ..., "code": ..., **extra}.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class AssuranceError(Exception):
    status_code = 400
    code = "ASSURANCE_ERROR"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(AssuranceError):
    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(AssuranceError):
    """Also raised for cross-tenant lookups so existence never leaks."""
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(AssuranceError):
    status_code = 403
    code = "FORBIDDEN"


class SodViolationError(AssuranceError):
    """A different person must perform this action."""
    status_code = 403
    code = "SOD_VIOLATION"


class ConflictError(AssuranceError):
    status_code = 409
    code = "CONFLICT"


class JobAlreadyRunningError(ConflictError):
    code = "JOB_ALREADY_RUNNING"


class IntegrityViolation(AssuranceError):
    """Raised only by explicit chain verification, never during append."""
    status_code = 409
    code = "INTEGRITY_VIOLATION"

    def __init__(self, message: str, first_invalid_index: int, **extra):
        super().__init__(message, first_invalid_index=first_invalid_index, **extra)
        self.first_invalid_index = first_invalid_index


class StorageError(AssuranceError):
    status_code = 502
    code = "STORAGE_ERROR"


class FatalJobFailure(AssuranceError):
    status_code = 500
    code = "JOB_FAILED"


async def assurance_error_handler(request: Request, exc: AssuranceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, **exc.extra},
    )
