"""Middleware registration."""

from fastapi import FastAPI

from bookpost.config import Settings
from bookpost.middleware.cors import setup_cors
from bookpost.middleware.error_handler import setup_error_handlers
from bookpost.middleware.logging import setup_logging
from bookpost.middleware.rate_limit import RateLimitMiddleware
from bookpost.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS is outermost so it also wraps 429 responses from the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
