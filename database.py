"""
Database connection for the store.

``connect_storage`` is called once at startup: it pings MongoDB and, if the
server cannot be reached within the configured timeout, falls back to
in-memory storage for the rest of the process lifetime.
"""
import logging

from fastapi import Request
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import Settings
from storage import MemoryStorage, MongoStorage, Storage

logger = logging.getLogger(__name__)


def connect_storage(settings: Settings) -> Storage:
    client = None
    try:
        client = MongoClient(
            settings.database_url,
            serverSelectionTimeoutMS=settings.database_timeout_ms,
            tz_aware=True,
        )
        client.admin.command("ping")
        storage = MongoStorage(client[settings.database_name])
    except PyMongoError as e:
        logger.warning("MongoDB connection failed: %s", e)
        logger.info("Falling back to in-memory storage")
        if client is not None:
            client.close()
        return MemoryStorage()
    logger.info("MongoDB connected successfully (database %s)", settings.database_name)
    return storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage
