"""Domain errors raised by the services and mapped to HTTP responses in app.main"""
from typing import Optional


class ServiceError(Exception):
    kind = "service_error"
    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.kind, "detail": self.message}
        body.update({k: v for k, v in self.context.items() if v is not None})
        return body


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **context):
        super().__init__(message, field=field, **context)
        self.field = field


class DiscountRejected(ValidationError):
    """Discount spec or code refused by the discount engine"""
    kind = "discount_rejected"

    def __init__(self, reason: str, message: str, field: Optional[str] = "discount"):
        super().__init__(message, field=field, reason=reason)
        self.reason = reason


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = 404


class ConflictError(ServiceError):
    kind = "conflict"
    status_code = 409


class ProcessorError(ServiceError):
    """The payment processor refused the request or did not complete it"""
    kind = "processor_error"
    status_code = 402

    def __init__(self, message: str, processor_status: Optional[str] = None, **context):
        super().__init__(message, processor_status=processor_status, **context)
        self.processor_status = processor_status


class ProcessorRejected(ProcessorError):
    kind = "processor_rejected"


class ProcessorTimeout(ProcessorError):
    kind = "processor_timeout"
    status_code = 504


class ProcessorUnavailable(ProcessorError):
    kind = "processor_unavailable"
    status_code = 502


class PersistenceError(ServiceError):
    kind = "persistence_error"
    status_code = 500


class SettlementError(PersistenceError):
    """Funds were captured by the processor but the order was not recorded"""
    kind = "settlement_pending"
    status_code = 202

    def __init__(self, message: str, capture_id: str, quotation_id: Optional[int] = None):
        super().__init__(message, capture_id=capture_id, quotation_id=quotation_id)
        self.capture_id = capture_id
        self.quotation_id = quotation_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = "CAPTURED"
        body["settled"] = False
        return body
