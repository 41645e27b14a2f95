"""
Errores de dominio y su traducción a respuestas HTTP.

Cada error lleva su status HTTP. Los handlers registrados en ``app.main``
responden siempre ``{"error": mensaje}``; cualquier status >= 500 se reporta
con un mensaje genérico para no exponer detalles internos.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "Server error"


class BillingError(Exception):
    """Base de los errores con status HTTP explícito."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BillingError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(BillingError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(BillingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BillingError):
    status_code = status.HTTP_409_CONFLICT


class UpstreamError(BillingError):
    """Respuesta no exitosa (o timeout) de un servicio externo."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        # Sólo se propagan status de error reales
        if status_code is None or status_code < 400:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        super().__init__(message, status_code)


class InternalError(BillingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def public_message(status_code: int, message: Optional[str]) -> str:
    if status_code >= 500:
        return GENERIC_SERVER_ERROR
    return message or "Billing error"


def error_response(status_code: int, message: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": public_message(status_code, message)},
    )


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else None
    return error_response(exc.status_code, detail)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug(f"Invalid request on {request.url.path}: {exc.errors()}")
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, None)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
