from fastapi import HTTPException, Request

from app.exceptions import (
    ConflictError,
    FulfillmentError,
    NotFoundError,
    PartialApprovalRequired,
    PrinterError,
    RenderError,
    ValidationError,
)

_STATUS_BY_ERROR: list[tuple[type[FulfillmentError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (PartialApprovalRequired, 403),
    (RenderError, 422),
    (PrinterError, 503),
]


def error_body(exc: Exception) -> dict:
    return {'code': getattr(exc, 'code', 'forbidden'), 'message': str(exc)}


def http_error(exc: FulfillmentError | PermissionError) -> HTTPException:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=error_body(exc))
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=error_body(exc))
    return HTTPException(status_code=500, detail=error_body(exc))


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None
