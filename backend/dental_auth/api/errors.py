"""Exception handlers rendering every failure as ``{"error": {...}}``."""

from dental_auth.core.exceptions import AccountLockedError, AuthError, ValidationError
from dental_auth.core.logging import logger
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


def error_body(message: str, details: list | None = None, **extra) -> dict:
    error = {"message": message}
    if details:
        error["details"] = details
    error.update(extra)
    return {"error": error}


def register_exception_handlers(app: FastAPI, is_production: bool) -> None:
    """Attach the handlers for domain, request-validation and unexpected errors."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        details = exc.errors if isinstance(exc, ValidationError) else None
        extra = {}
        if isinstance(exc, AccountLockedError):
            extra["unlockAt"] = exc.unlock_at.isoformat()
            extra["minutesRemaining"] = exc.minutes_remaining
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, details, **extra),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=error_body("Invalid request.", details))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
        details = None if is_production else [str(exc)]
        return JSONResponse(status_code=500, content=error_body("An unexpected error occurred.", details))
