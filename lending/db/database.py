# lending/db/database.py
import logging

import motor.motor_asyncio
from beanie import init_beanie
from fastapi import Request

from lending.core.config import MONGODB_URL, DATABASE_NAME
from lending.db.documents import DOCUMENT_MODELS
from lending.db.mongo import MongoStore

logger = logging.getLogger(__name__)


async def init_db() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Connects Motor, initializes Beanie and returns the client."""
    logger.info("Connecting to MongoDB...")
    # tz_aware keeps datetimes UTC-aware on the way back out
    client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    database = client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")
    return client


def create_store(client: motor.motor_asyncio.AsyncIOMotorClient) -> MongoStore:
    return MongoStore(client)


def get_engine(request: Request):
    """FastAPI dependency: the LendingEngine built in the application lifespan."""
    return request.app.state.engine
