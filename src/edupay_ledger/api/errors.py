'''
Maps ledger exceptions to HTTP responses.
'''
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..common.exceptions import (
    CarryoverNotFoundError,
    CarryoverStateError,
    ConcurrencyConflictError,
    FeeStructureNotFoundError,
    InvalidInstallmentPlanError,
    LedgerError,
    PromiseNotFoundError,
    PromiseStateError,
    RecordDecodeError,
    StudentNotFoundError,
)
from ..common.logger import log

# Most specific first; the first isinstance match wins
STATUS_BY_ERROR: list[tuple[type[LedgerError], int]] = [
    (StudentNotFoundError, status.HTTP_404_NOT_FOUND),
    (FeeStructureNotFoundError, status.HTTP_404_NOT_FOUND),
    (CarryoverNotFoundError, status.HTTP_404_NOT_FOUND),
    (PromiseNotFoundError, status.HTTP_404_NOT_FOUND),
    (CarryoverStateError, status.HTTP_409_CONFLICT),
    (PromiseStateError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (InvalidInstallmentPlanError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RecordDecodeError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: LedgerError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc}")
        detail = "The ledger store returned data that could not be read."
    else:
        detail = str(exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(LedgerError, ledger_error_handler)
