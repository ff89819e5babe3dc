import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("aiborn.errors")


class AppError(Exception):
    """Error with a stable machine-readable code, rendered as JSON."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        extra: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class ConfigurationError(AppError):
    """A secret or provider key the server needs is not configured."""

    status_code = 500
    code = "CONFIGURATION_ERROR"


class ValidationFailed(AppError):
    status_code = 400
    code = "INVALID_REQUEST"


class RateLimited(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.headers = headers or {}


def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("AppError %s path=%s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.info("AppError %s path=%s", exc.code, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message, **exc.extra},
        headers=getattr(exc, "headers", None),
    )


def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Safe to return exc.detail (it’s intended for clients), but don’t log secrets.
    logger.info("HTTPException %s path=%s", exc.status_code, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("ValidationError path=%s", request.url.path)
    return JSONResponse(status_code=422, content={"detail": "Invalid request"})


def unhandled_exception_handler(request: Request, exc: Exception):
    # Log stack trace server-side, but return generic message client-side.
    logger.exception("UnhandledException path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
