# lending/main.py
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status as fastapi_status, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from lending.api.v1.api import api_router_v1
from lending.core.config import (
    LENDING_POLICY,
    OVERDUE_SCAN_ENABLED,
    OVERDUE_SCAN_INTERVAL_MINUTES,
    SCHEDULER_TIMEZONE,
    setup_logging,
)
from lending.core.engine import LendingEngine
from lending.core.errors import LendingError
from lending.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from lending.db.database import create_store, init_db
from lending.middleware.authentication import AuthMiddleware
from lending.middleware.logging import RequestLoggingMiddleware
from lending.scheduler.jobs import run_overdue_scan

scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    client = await init_db()
    app.state.mongo_client = client
    app.state.engine = LendingEngine(create_store(client), LENDING_POLICY)
    logger.info("Database and lending engine initialized.")

    if OVERDUE_SCAN_ENABLED:
        scheduler.add_job(
            run_overdue_scan,
            trigger=IntervalTrigger(minutes=OVERDUE_SCAN_INTERVAL_MINUTES),
            args=[app.state.engine],
            id="overdue_scan_job",
            name="Penalize Overdue Reservations",
            replace_existing=True,
            misfire_grace_time=60 * OVERDUE_SCAN_INTERVAL_MINUTES,
            max_instances=1,
        )
        scheduler.start()
        logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    else:
        logger.info("Overdue scan scheduler disabled.")
    yield
    logger.info("Application shutdown...")
    if scheduler.running:
        scheduler.shutdown()
    client.close()


app = FastAPI(
    title="Lending API",
    description="Reservation, return and penalty lifecycle for shared equipment.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Error handling ---
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


@app.exception_handler(LendingError)
async def lending_exception_handler(request: Request, exc: LendingError):
    logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
@app.exception_handler(PydanticValidationError)
async def validation_exception_handler(request: Request, exc: PydanticValidationError):
    logger.error(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled Exception: {exc}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal server error occurred."},
    )


# --- Middleware ---
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(AuthMiddleware)
app.state.limiter = get_rate_limiter()
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api_router_v1)


@app.get("/")
async def read_root():
    return {"message": "Welcome to the Lending API!"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def ping_mongodb(request: Request):
    client = getattr(request.app.state, "mongo_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="MongoDB client not initialized.")
    try:
        await client.admin.command("ping")
    except PyMongoError:
        raise HTTPException(status_code=503, detail="MongoDB connection failed.")
    return {"status": "success", "message": "MongoDB connection is healthy."}
