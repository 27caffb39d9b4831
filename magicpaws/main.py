import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from magicpaws.core.config import settings, validate_config, cors_origins
from magicpaws.core.logging import LOGGER_NAME, configure_logging
from magicpaws.core.middleware.request_id import RequestIdMiddleware
from magicpaws.core.middleware.metrics import MetricsMiddleware
from magicpaws.core.middleware.tracing import TracingMiddleware
from magicpaws.core.validation import validate_env
from magicpaws.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from magicpaws.core.tracing import setup_tracing
from magicpaws.api import (
    admin_content,
    billing,
    bookings,
    content,
    cron,
    health,
    metrics,
    notifications,
    users,
)

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))
setup_tracing(enabled=settings.OTEL_ENABLED)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting Magic Paws backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logger.info("Stopping Magic Paws backend...")


app = FastAPI(title="Magic Paws - Backend", lifespan=lifespan)

# Middlewares (last added runs first)
app.add_middleware(TracingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins() or [settings.PUBLIC_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(users.router)
app.include_router(content.router)
app.include_router(admin_content.router)
app.include_router(billing.router)
app.include_router(bookings.router)
app.include_router(notifications.router)
app.include_router(cron.router)
