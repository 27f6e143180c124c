"""
Shared helpers for route modules.
"""

from fastapi import HTTPException, Request

from ..core.exceptions import (
    ConflictError,
    NotFoundError,
    OperatorError,
    PreconditionError,
    ReadonlyError,
    StatusBlockError,
    ValidationError,
)
from ..web.app_state import OperatorContext

BUILTIN_READONLY = "builtin_readonly"


def get_context(request: Request) -> OperatorContext:
    return request.app.state.context


def to_http_error(exc: OperatorError) -> HTTPException:
    """Translate a typed core error into the status code the API promises."""
    if isinstance(exc, ReadonlyError):
        return HTTPException(status_code=403, detail=BUILTIN_READONLY)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=exc.reasons)
    if isinstance(exc, StatusBlockError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PreconditionError):
        return HTTPException(status_code=412, detail=exc.describe())
    return HTTPException(status_code=500, detail=str(exc))
