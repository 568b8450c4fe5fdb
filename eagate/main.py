import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from eagate/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from eagate.core.config import settings, validate_config  # noqa: E402
from eagate.core.database import create_all_tables  # noqa: E402
from eagate.features.generation.service import close_client  # noqa: E402
from eagate.core.logging import configure_logging  # noqa: E402
from eagate.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from eagate.core.validation import validate_env  # noqa: E402
from eagate.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from eagate.api import billing, generate, health, usage  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("eagate")
    logger.info("Starting eagate...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        await close_client()
        logging.getLogger("eagate").info("Stopping eagate...")


app = FastAPI(title="EA Generator - Entitlement Gate", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (comma-separated origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router)
app.include_router(generate.router)
app.include_router(billing.router)
app.include_router(usage.router)
