"""
Result -> HTTP translation shared by the routers.
"""
from fastapi import HTTPException

from ..services.result import ErrorKind, Result

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.INVALID_INPUT: 422,
}


def unwrap_or_raise(result: Result):
    """Value of an Ok, or HTTPException with the status mapped from the error kind."""
    if result.is_err:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES[result.error.kind],
            detail=result.error.message,
        )
    return result.value
