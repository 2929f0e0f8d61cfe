"""
FastAPI application factory.

* Registers routes for trips, drivers and admin.
* Starts / stops the post-commit dispatcher via lifespan events and closes
  the shared Redis pool on shutdown.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from freight.api.dependencies import close_route_estimator, dispatcher
from freight.api.middleware import limiter
from freight.api.routes import admin, drivers, trips
from freight.infrastructure.redis_client import close_redis

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the dispatcher on startup; stop it and release clients on shutdown."""
    await dispatcher.start()
    yield
    await dispatcher.stop()
    await close_route_estimator()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Freight Trip Lifecycle API",
        description=(
            "Moves freight trips through their lifecycle: acceptance, "
            "pickup, transit, delivery and settlement.  Tracks driver "
            "locations and reports trip progress."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
