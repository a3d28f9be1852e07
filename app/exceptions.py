from __future__ import annotations


class FulfillmentError(Exception):
    code = 'fulfillment_error'


class ValidationError(FulfillmentError, ValueError):
    code = 'validation_error'


class NotFoundError(FulfillmentError, LookupError):
    code = 'not_found'


class ConflictError(FulfillmentError):
    code = 'conflict'


class AlreadyAuthorized(ConflictError):
    code = 'already_authorized'


class AlreadyShipped(ConflictError):
    code = 'already_shipped'


class NotAuthorized(ConflictError):
    code = 'not_authorized'


class ItemVoided(ConflictError):
    code = 'voided'


class PartialApprovalRequired(FulfillmentError, PermissionError):
    code = 'partial_approval_required'


class RenderError(FulfillmentError):
    code = 'render_error'

    def __init__(self, message: str, *, box_number: int | None = None) -> None:
        super().__init__(message)
        self.box_number = box_number


class PrinterError(FulfillmentError):
    code = 'printer_error'
