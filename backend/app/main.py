# backend/app/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from .core.config import settings
from .core.constants import ALLOWED_ORIGINS, API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .core.request_context import attach_request_id_filter
from .errors import register_error_handlers
from .middleware.performance import PerformanceMiddleware
from .routes.v1 import (
    admin as admin_v1,
    appeals as appeals_v1,
    bookings as bookings_v1,
    health as health_v1,
    prometheus as prometheus_v1,
)

logging.basicConfig(
    level=logging.INFO,
    format=(
        "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] [%(booking_id)s] %(message)s"
    ),
)
attach_request_id_filter()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(
        f"Booking lock backend: {settings.booking_lock_backend}, "
        f"task dispatch {'enabled' if settings.task_dispatch_enabled else 'disabled'}"
    )
    if not settings.stripe_api_key:
        logger.warning("Stripe secret key not configured; gateway calls will fail")

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
    generate_unique_id_function=_unique_operation_id,
)
# Register unified error envelope handlers
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)
app.add_middleware(PerformanceMiddleware)

# API v1 router - all versioned endpoints are mounted here
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(appeals_v1.router, prefix="/appeals")
api_v1.include_router(admin_v1.router, prefix="/admin")
app.include_router(api_v1)

# Infrastructure endpoints stay unversioned for probes and scrapers
app.include_router(health_v1.router)
app.include_router(prometheus_v1.router)


@app.get("/")
def root() -> dict[str, str]:
    return {"message": f"{BRAND_NAME} API", "version": API_VERSION, "docs": "/docs"}
