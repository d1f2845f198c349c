import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from backend/.env
backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(backend_dir, ".env"))

from backend.api import billing, health, notifications, usage  # noqa: E402
from backend.core.config import settings, validate_config  # noqa: E402
from backend.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from backend.core.logging import LOGGER_NAME, configure_logging  # noqa: E402
from backend.core.middleware.request_id import RequestIdMiddleware  # noqa: E402

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting Inbox Cleaner Pro billing service (env=%s)", settings.ENV)
    logger.info("Stripe: %s", "enabled" if settings.stripe_enabled else "simulated")
    logger.info("Email service: %s", "enabled" if settings.mail_enabled else "disabled")
    try:
        yield
    finally:
        logging.getLogger(LOGGER_NAME).info("Stopping Inbox Cleaner Pro billing service...")


app = FastAPI(title="Inbox Cleaner Pro - Billing", version=health.SERVICE_VERSION, lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(billing.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(usage.router, prefix="/api")
