import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppException(Exception):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None, **extra):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(message)


class ValidationError(AppException):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppException):
    status_code = 401
    code = "UNAUTHORIZED"


class AuthorizationError(AppException):
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"


class NotFoundError(AppException):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppException):
    status_code = 409
    code = "CONFLICT"


class PayloadTooLarge(AppException):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"


class RateLimitExceeded(AppException):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"


class StorageError(AppException):
    status_code = 500
    code = "STORAGE_ERROR"


class StorageUnavailable(AppException):
    status_code = 503
    code = "STORAGE_UNAVAILABLE"


class NotificationError(Exception):
    """Raised by the mail transport. Never leaves the notification workers."""


def error_response(exc: AppException) -> JSONResponse:
    content = {"message": exc.message, "code": exc.code}
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI, debug_details: bool = False) -> None:
    @app.exception_handler(AppException)
    async def _app_exception_handler(_: Request, exc: AppException):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(_: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request", "code": "VALIDATION_ERROR", "fields": fields},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(_: Request, exc: StarletteHTTPException):
        code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail), "code": code},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    async def _storage_unavailable_handler(request: Request, exc: SQLAlchemyError):
        logger.error("storage unavailable on %s %s: %s", request.method, request.url.path, exc)
        store = getattr(request.app.state, "store", None)
        if store is not None:
            store.mark_unavailable()
        return error_response(StorageUnavailable("Database connection unavailable"))

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("storage error on %s %s", request.method, request.url.path)
        return error_response(StorageError("Database operation failed"))

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        content = {"message": "Internal server error", "code": "INTERNAL_SERVER_ERROR"}
        if debug_details:
            content["detail"] = str(exc)
        return JSONResponse(status_code=500, content=content)
