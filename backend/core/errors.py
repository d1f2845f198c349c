"""Error taxonomy and normalized `{success: false, error}` handlers."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from backend.core.config import settings
from backend.core.logging import LOGGER_NAME, get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def payload(self) -> Dict[str, Any]:
        """Extra fields merged into the error response body."""
        return {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class InvalidPaymentRequest(ValidationError):
    """Malformed amount, currency or user id. Caller's fault, never retried."""
    code = "invalid_payment_request"


class PaymentProviderError(AppError):
    """Charge attempt failed or requires further action at the provider."""
    code = "payment_provider_error"
    status_code = 402

    def __init__(self, message: str, *, intent_id: Optional[str] = None, provider_status: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.intent_id = intent_id
        self.provider_status = provider_status

    def payload(self) -> Dict[str, Any]:
        return {"intentId": self.intent_id, "status": self.provider_status}


class WebhookAuthError(AppError):
    code = "webhook_auth_failed"
    status_code = 400


class NotificationError(AppError):
    """Base for notification-layer failures. Never affects billing state."""
    code = "notification_error"


class InvalidNotificationType(NotificationError, ValidationError):
    code = "invalid_notification_type"
    status_code = 400


class NotificationServiceUnavailable(NotificationError):
    code = "notification_unavailable"
    status_code = 503


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "success": False,
        "error": message,
        "code": code,
        "request_id": request_id,
    }


def _respond(status_code: int, payload: dict, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    payload.update(exc.payload())
    logger = logging.getLogger(LOGGER_NAME)
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, payload, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 404:
        code, message = "not_found", "Endpoint not found"
    else:
        code, message = "http_error", str(exc.detail) if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger(LOGGER_NAME)
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, payload, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "Invalid request: " + "; ".join(parts) if parts else "Invalid request"
    payload = _error_payload(ValidationError.code, message, rid)
    logging.getLogger(LOGGER_NAME).warning(
        "request.invalid", extra={"request_id": rid, "error_code": ValidationError.code, "status": 400}
    )
    return _respond(400, payload, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger(LOGGER_NAME)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    message = "Internal server error"
    if not settings.is_production:
        message = f"{message} ({type(exc).__name__})"
    return _respond(500, _error_payload("internal_error", message, rid), rid)
