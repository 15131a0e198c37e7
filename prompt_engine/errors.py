import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def _error_payload(*, error: str, type_: str, code: str | None = None, details: Any | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": error, "code": code, "type": type_}
    if details is not None:
        payload["details"] = details
    return payload


class PromptEngineError(Exception):
    """Base error for request-level failures.

    Raised from request handlers or the services they call; the handlers
    registered by ``register_exception_handlers`` turn it into JSON.
    """

    status_code: int = 400
    default_code: str | None = None

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None,
                 details: Any | None = None) -> None:
        self.message = message
        self.code = code if code is not None else self.default_code
        self.status_code = status_code if status_code is not None else self.status_code
        self.details = details
        super().__init__(message)


class UnauthorizedError(PromptEngineError):
    status_code = 401
    default_code = "unauthorized"


class ForbiddenError(PromptEngineError):
    status_code = 403
    default_code = "forbidden"


class NotFoundError(PromptEngineError):
    status_code = 404
    default_code = "not_found"


class ConflictError(PromptEngineError):
    """Action is not valid for the resource's current status."""

    status_code = 409
    default_code = "conflict"


class InputValidationError(PromptEngineError):
    status_code = 422
    default_code = "validation_error"


class JobInProgressError(PromptEngineError):
    """A generation job is already pending or processing for this user."""

    status_code = 429
    default_code = "job_in_progress"

    def __init__(self, job_id: str) -> None:
        super().__init__("Generation already in progress", details={"jobId": job_id})
        self.job_id = job_id


class ConfigurationError(PromptEngineError):
    status_code = 500
    default_code = "configuration_error"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PromptEngineError)
    async def _engine_error_handler(_request: Request, exc: PromptEngineError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(error=exc.message, code=exc.code,
                                   type_=exc.__class__.__name__, details=exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_error_payload(error="Validation error", code="validation_error",
                                   type_=exc.__class__.__name__, details=jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = getattr(exc, "detail", None)
        error, details = (detail, None) if isinstance(detail, str) else ("Request failed", detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(error=error, code="http_exception",
                                   type_=exc.__class__.__name__, details=details),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content=_error_payload(error="Internal server error", code="internal_error",
                                   type_="InternalServerError"),
        )
