"""
Conversion of billing error values into HTTP responses.

Error bodies look like ``{"detail": "...", "code": "<error kind>"}``.
"""

from typing import NoReturn, TypeVar

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from core.errors import BillingError

T = TypeVar("T")


class BillingHTTPException(HTTPException):
    """HTTPException that also carries the billing error kind."""

    def __init__(self, error: BillingError):
        super().__init__(status_code=error.http_status, detail=error.message)
        self.code = error.kind.value


def raise_for_error(error: BillingError) -> NoReturn:
    raise BillingHTTPException(error)


def unwrap(result: T | BillingError) -> T:
    """Return *result*, or raise the HTTP form of a ``BillingError``."""
    if isinstance(result, BillingError):
        raise_for_error(result)
    return result


async def billing_exception_handler(request: Request, exc: BillingHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )
