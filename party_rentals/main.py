import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import models
from .database import engine
from .routers import admin_router, booking_router, cancellation_router, product_router, promo_router, webhook_router
from .outbox_poller import run_outbox_poller
from .booking_scheduler import run_booking_scheduler

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

logger = logging.getLogger("party_rentals")

# Create database tables on startup (schema migrations are handled outside this service)
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("Starting background tasks...")

    redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
    try:
        await FastAPILimiter.init(redis_client)
        logger.info("FastAPILimiter initialized with Redis.")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPILimiter: {e}")

    # Publishes booking events from the outbox table
    poller_task = asyncio.create_task(run_outbox_poller())

    # Releases pending bookings whose deposit was never paid
    scheduler_task = asyncio.create_task(run_booking_scheduler())

    yield

    logger.info("Shutting down background tasks...")
    await redis_client.close()

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
    title="Party Rentals Booking API",
    description="Availability, pricing, bookings and cancellations for party rentals.",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(product_router.router)
app.include_router(booking_router.router)
app.include_router(promo_router.router)
app.include_router(cancellation_router.router)
app.include_router(webhook_router.router)
app.include_router(admin_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Party Rentals Booking Service"}
