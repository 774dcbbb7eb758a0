"""HTTP error mapping shared by all routers."""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from techhub.core.logging import get_logger

logger = get_logger(__name__)


def describe_validation_error(exc: RequestValidationError) -> str:
    """Summarize the first validation error in one client-facing sentence.

    Messages raised by our own value validators are passed through as is.
    Anything else gets a generic message naming the offending field.
    """
    errors = exc.errors()
    if not errors:
        return "Invalid request."

    error = errors[0]
    cause = error.get("ctx", {}).get("error")
    if error.get("type") == "value_error" and cause is not None:
        return str(cause)

    if error.get("type") == "json_invalid":
        return "Invalid request body: malformed JSON."

    field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
    if error.get("type") == "missing":
        return f"Invalid request: '{field}' is required."
    return f"Invalid request: '{field}' is not valid."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        detail = describe_validation_error(exc)
        logger.bind(path=request.url.path, detail=detail).info("request_validation_failed")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": detail},
        )
