import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import models
from .database import engine
from .routers import booking_router, payment_router, search_router, shortlet_router
from .outbox_poller import run_outbox_poller
from .booking_scheduler import run_booking_scheduler

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("shortlet_service")

# Creates settings, bookings, blocks, payments and outbox tables if missing
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("Starting background tasks...")

    redis_client = None
    try:
        redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
        await FastAPILimiter.init(redis_client)
        logger.info("FastAPILimiter initialized with Redis.")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPILimiter: {e}")

    poller_task = asyncio.create_task(run_outbox_poller(poll_interval=settings.OUTBOX_POLL_INTERVAL_SECONDS))
    scheduler_task = asyncio.create_task(run_booking_scheduler())

    yield

    logger.info("Shutting down background tasks...")

    if redis_client is not None:
        await redis_client.aclose()

    poller_task.cancel()
    scheduler_task.cancel()

    try:
        await poller_task
    except asyncio.CancelledError:
        logger.info("Outbox poller task successfully cancelled.")
    except Exception as e:
        logger.error(f"Error during outbox poller shutdown: {e}")

    try:
        await scheduler_task
    except asyncio.CancelledError:
        logger.info("Booking scheduler task successfully cancelled.")
    except Exception as e:
        logger.error(f"Error during booking scheduler shutdown: {e}")


app = FastAPI(
    title="Shortlet Booking Service API",
    description="Shortlet availability, pricing and booking lifecycle.",
    version="1.0.0",
    lifespan=lifespan
)

# search first: /shortlets/search must win over /shortlets/{property_id}
app.include_router(search_router.router)
app.include_router(shortlet_router.router)
app.include_router(booking_router.router)
app.include_router(payment_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Shortlet Booking Service"}
