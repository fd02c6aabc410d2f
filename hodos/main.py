import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from the repository root .env
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from hodos.core.config import settings, validate_config
from hodos.core.database import create_all_tables
from hodos.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from hodos.core.logging import configure_logging
from hodos.core.middleware.request_id import RequestIdMiddleware
from hodos.core.validation import validate_env
from hodos.features.plans.service import seed_plans
from hodos.api import (
    access,
    admin_payments,
    admin_subscriptions,
    health,
    payments,
    plans,
    profile,
)

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("hodos")
    logger.info("Starting Hodos subscriptions API...")
    app.state.startup_time = time.time()
    if settings.AUTO_MIGRATE:
        create_all_tables()
        seed_plans()
    try:
        yield
    finally:
        logging.getLogger("hodos").info("Stopping Hodos subscriptions API...")


app = FastAPI(title="Hodos - Subscriptions", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plans.router, prefix="/api", tags=["plans"])
app.include_router(payments.router, prefix="/api", tags=["payments"])
app.include_router(access.router, prefix="/api", tags=["access"])
app.include_router(profile.router, prefix="/api", tags=["profile"])
app.include_router(admin_payments.router, tags=["admin-payments"])
app.include_router(admin_subscriptions.router, tags=["admin-subscriptions"])
app.include_router(health.root_router, tags=["health"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("hodos.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
