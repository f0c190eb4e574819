import json
import logging
import time
import traceback
from contextvars import ContextVar
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as SATimeoutError
from sqlalchemy.orm.exc import StaleDataError

from backoffice.core.config import settings
from backoffice.core.errors import (
    ConcurrencyError,
    FulfillmentError,
    StoreUnavailableError,
)

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
logger = logging.getLogger("backoffice.api")
fulfillment_logger = logging.getLogger("backoffice.fulfillment")


def setup_observability() -> None:
    for target in (logger, fulfillment_logger):
        if target.handlers:
            continue
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        target.addHandler(handler)
        target.setLevel(logging.INFO)
        target.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(target: logging.Logger, level: int, event: str, **fields) -> None:
    payload = {"event": event, "request_id": get_request_id(), **fields}
    target.log(level, json.dumps(payload, default=str))


def _error_response(
    *,
    status_code: int,
    request: Request,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": request_id,
                "path": request.url.path,
                "details": details,
            }
        },
    )


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            json.dumps(
                {
                    "event": "request",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                }
            )
        )
        request_id_ctx.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )
    logger.error(
        json.dumps(
            {
                "event": "unhandled_exception",
                "request_id": request_id,
                "path": request.url.path,
                "error": str(exc),
                "traceback": traceback.format_exc(limit=10),
            }
        )
    )
    return _error_response(
        status_code=500,
        request=request,
        code="internal_error",
        message="Internal server error",
    )


async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    level = logging.ERROR if exc.state_changed else logging.WARNING
    log_event(
        logger,
        level,
        "fulfillment_error",
        path=request.url.path,
        code=exc.code,
        order_id=exc.order_id,
        state_changed=exc.state_changed,
        retryable=exc.retryable,
        error=exc.message,
    )
    headers = None
    if exc.retryable:
        headers = {"Retry-After": str(settings.store_retry_after_seconds)}
    details = exc.details()
    if exc.state_changed:
        details = [
            {"state_changed": True, "needs_reconciliation": True, "order_id": exc.order_id},
            *(details or []),
        ]
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=exc.code,
        message=exc.message,
        details=details,
        headers=headers,
    )


async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    if isinstance(exc, StaleDataError):
        translated: FulfillmentError = ConcurrencyError(
            "Record was modified by another request; reload and retry"
        )
    elif isinstance(exc, (OperationalError, SATimeoutError)):
        translated = StoreUnavailableError("Data store is temporarily unavailable")
    else:
        return await unhandled_exception_handler(request, exc)
    return await fulfillment_exception_handler(request, translated)


_STATUS_CODE_MAP = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    503: "store_unavailable",
}


async def http_exception_handler(request: Request, exc: HTTPException):
    code = _STATUS_CODE_MAP.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=code,
        message=message,
        details=details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part != "body"]
        details.append(
            {
                "field": ".".join(location) if location else "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )

    return _error_response(
        status_code=422,
        request=request,
        code="validation_error",
        message="Validation failed",
        details=details,
    )
