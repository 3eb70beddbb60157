"""Request logging middleware for the referral and variation services.

Every request gets an X-Request-ID (propagated from the caller when present)
and a start/completion log pair. The completion line carries whatever ledger
identifiers the handler bound with ``bind_log_context``: the Stripe event and
order for webhooks, the referral code for validation and verification.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    bind_log_context,
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)
from libs.common.rate_limit import get_client_ip

logger = get_logger(__name__)

UNLOGGED_PATHS = frozenset({"/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the request ID and caller IP, then logs the request lifecycle.

    The Stripe relay and the storefront both send X-Request-ID, so a webhook
    delivery can be traced from the checkout that created the payment intent.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get("X-Request-ID"),
            path=request.url.path,
            method=request.method,
        )
        # Public endpoints are rate limited per IP; log the same key.
        bind_log_context(client_ip=get_client_ip(request))
        logged = request.url.path not in UNLOGGED_PATHS

        start_time = time.perf_counter()
        if logged:
            logger.info("Request started")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed with unhandled exception",
                extra={
                    "extra_fields": {
                        "error": str(e),
                        "duration_ms": _elapsed_ms(start_time),
                    }
                },
            )
            clear_request_context()
            raise

        if logged:
            if response.status_code >= 500:
                log = logger.error
            elif response.status_code >= 400:
                log = logger.warning
            else:
                log = logger.info
            log(
                "Request completed",
                extra={
                    "extra_fields": {
                        "status_code": response.status_code,
                        "duration_ms": _elapsed_ms(start_time),
                        "rate_limit_remaining": response.headers.get(
                            "X-RateLimit-Remaining"
                        ),
                    }
                },
            )

        response.headers["X-Request-ID"] = request_id
        clear_request_context()
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def add_observability_middleware(app: FastAPI) -> None:
    """
    Configure logging and install the request middleware on an app.
    """
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
