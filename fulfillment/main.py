"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fulfillment.config import settings
from fulfillment.database import close_db
from fulfillment.logging_config import configure_logging
from fulfillment.redis import RedisClient

from fulfillment.api.checkout import router as checkout_router
from fulfillment.api.downloads import router as downloads_router
from fulfillment.api.orders import router as orders_router
from fulfillment.api.webhooks import router as webhooks_router
from fulfillment.api.admin.files import router as admin_files_router
from fulfillment.api.admin.orders import router as admin_orders_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logging.info(f"Starting up {settings.app_name}...")

    try:
        RedisClient.get_client()
    except Exception as e:
        logging.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    await RedisClient.close()
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="Digital Fulfillment",
    description="Checkout, payment webhooks and download delivery for digital prints",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


origins = list(settings.cors_origins) or [settings.site_url]
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


app.include_router(checkout_router)
app.include_router(downloads_router)
app.include_router(orders_router)
app.include_router(
    webhooks_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

app.include_router(
    admin_orders_router,
    prefix="/admin",
    tags=["admin"],
)
app.include_router(
    admin_files_router,
    prefix="/admin",
    tags=["admin"],
)
