import logging
from typing import Any, Dict, Optional

from fastapi.exceptions import RequestValidationError
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

from traffic_fines.core.logging import get_request_id

logger = logging.getLogger(__name__)


class FineServiceError(Exception):
    """Base class for errors raised by the fine, payment and catalog services."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.context)
        return body


class NotFoundError(FineServiceError):
    status_code = 404
    code = "not_found"


class ForbiddenError(FineServiceError):
    status_code = 403
    code = "forbidden"


class InvalidStateError(FineServiceError):
    status_code = 400
    code = "invalid_state"


class ValidationFailedError(FineServiceError):
    """Malformed or out-of-range input; ``errors`` maps field name to message."""

    status_code = 422
    code = "validation_failed"

    def __init__(self, errors: Dict[str, str], message: str = "Validation failed"):
        super().__init__(message, details=errors)
        self.errors = errors


class PaymentNotCompleteError(FineServiceError):
    code = "payment_not_complete"

    def __init__(self, payment_status: Optional[str]):
        super().__init__("Payment has not been completed successfully", payment_status=payment_status)
        self.payment_status = payment_status


class PaymentMismatchError(FineServiceError):
    code = "payment_mismatch"


class SignatureInvalidError(FineServiceError):
    code = "signature_invalid"


class GatewayUnavailableError(FineServiceError):
    """The payment gateway could not be reached; the caller may retry."""

    status_code = 503
    code = "gateway_unavailable"


def register_exception_handlers(app):
    @app.exception_handler(FineServiceError)
    async def fine_service_exception_handler(request: Request, exc: FineServiceError):
        logger.info("Service error", extra={"status_code": exc.status_code, "code": exc.code})
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.info("HTTP exception", extra={"status_code": exc.status_code})
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info("Validation error", extra={"errors": exc.errors()})
        return JSONResponse(
            {"error": "Validation error", "code": ValidationFailedError.code, "details": jsonable_errors(exc)},
            status_code=422,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception | path=%s", request.url.path)
        return JSONResponse({"error": "Internal server error", "request_id": get_request_id()}, status_code=500)


def jsonable_errors(exc: RequestValidationError) -> Dict[str, str]:
    # field path (minus the "body"/"query" prefix) -> first message
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.setdefault(".".join(loc) or "__root__", err.get("msg", "invalid"))
    return errors
