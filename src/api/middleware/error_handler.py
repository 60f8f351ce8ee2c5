"""Exception handlers.

Payment errors carry a fixed user-facing message; the exception text is
logged and never returned.
"""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.payments.errors import PaymentError

logger = structlog.get_logger()


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "payment_request_rejected",
        request_id=request_id,
        error=exc.error,
        status_code=exc.status_code,
        detail=str(exc),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.user_message, "request_id": request_id},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )
