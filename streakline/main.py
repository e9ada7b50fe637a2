import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the project root .env (never under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from streakline.core.config import settings, validate_config, cors_origins  # noqa: E402
from streakline.core.database import create_all_tables, get_database_url  # noqa: E402
from streakline.core.logging import configure_logging  # noqa: E402
from streakline.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from streakline.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from streakline.core.validation import validate_env  # noqa: E402
from streakline.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from streakline.api import health, metrics, streaks  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("streakline")
    logger.info("Starting Streakline service...")
    app.state.startup_time = time.time()
    if get_database_url() and settings.AUTO_CREATE_TABLES:
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("streakline").info("Stopping Streakline service...")


app = FastAPI(title="Streakline", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(streaks.router, tags=["streaks"])
app.include_router(health.root_router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("streakline.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
