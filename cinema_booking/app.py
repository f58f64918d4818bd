import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cinema_booking.api.v1 import (
    routes_booking,
    routes_health,
    routes_points,
    routes_pricing,
    routes_show,
    routes_webhook,
)
from cinema_booking.core.config import settings
from cinema_booking.core.exceptions import BookingError
from cinema_booking.db import session
from cinema_booking.redis import close_redis
from cinema_booking.workers.expiry_sweeper import expiry_sweeper
from cinema_booking.workers.side_effect_worker import side_effect_worker


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.ENV == 'development':
        await session.init_db()

    tasks = [asyncio.create_task(side_effect_worker())]
    if settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
        tasks.append(asyncio.create_task(expiry_sweeper(settings.EXPIRY_SWEEP_INTERVAL_SECONDS)))
    logger.info("Cinema booking service started")
    yield
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task
    await close_redis()
    await session.engine.dispose()
    logger.info("Cinema booking service stopped")


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description=settings.PROJECT_DESCRIPTION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(
        routes_health.router,
        prefix=settings.API_V1_PREFIX
    )

    app.include_router(
        routes_booking.router,
        prefix=settings.API_V1_PREFIX
    )

    app.include_router(
        routes_show.router,
        prefix=settings.API_V1_PREFIX
    )

    app.include_router(
        routes_pricing.router,
        prefix=settings.API_V1_PREFIX
    )

    app.include_router(
        routes_points.router,
        prefix=settings.API_V1_PREFIX
    )

    app.include_router(
        routes_webhook.router,
        prefix=f"{settings.API_V1_PREFIX}/webhooks",
        tags=["webhooks"]
    )

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, ex: BookingError):
        return JSONResponse(
            status_code=ex.status_code,
            content={"error": ex.message, "code": type(ex).__name__, "details": ex.details}
        )

    @app.get("/")
    async def root():
        return {"message": "Cinema booking backend is running"}

    return app


app = create_app()
