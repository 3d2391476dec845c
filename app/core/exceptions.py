import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings

logger = logging.getLogger(__name__)


class TaskError(Exception):
    """Base class for failures that map to a specific HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TaskValidationError(TaskError):
    """Raised when task input breaks one or more field rules."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, errors: list[str]) -> None:
        super().__init__(", ".join(errors))
        self.errors = errors


class TaskNotFoundError(TaskError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, task_id: int) -> None:
        super().__init__("Task not found")
        self.task_id = task_id


class InvalidTransitionError(TaskError):
    """Raised when a status change or deletion is forbidden by the task workflow."""

    status_code = status.HTTP_400_BAD_REQUEST


class StoreUnavailableError(TaskError):
    """Raised when the database cannot be reached or a pooled connection times out."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Database unavailable") -> None:
        super().__init__(message)


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(TaskError)
    async def task_error_handler(request: Request, exc: TaskError):
        logger.warning(
            f"{request.method} {request.url.path} failed: {exc.message}"
        )
        return _failure(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _failure(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"][1:])
            messages.append(f"{location}: {error['msg']}" if location else error["msg"])
        logger.warning(f"{request.method} {request.url.path} rejected: {messages}")
        return _failure(status.HTTP_400_BAD_REQUEST, ", ".join(messages))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        if settings.debug:
            return _failure(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                str(exc) or "Internal Server Error",
                stack=traceback.format_exception(exc),
            )
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")
