# modelhub/core/db.py
from __future__ import annotations

import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import settings

log = logging.getLogger(__name__)

USERS = "users"
AI_MODELS = "ai_models"
DATASETS = "datasets"
META = "meta"  # singleton markers keyed by _id

# -------------------------------------------------------------------
# Mongo connection (lazy, one client per process)
# -------------------------------------------------------------------
_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=settings.mongo_timeout_ms)
        log.info("MongoDB client created for database '%s'", settings.mongo_db)
    return _client


def get_database() -> Database:
    return get_client()[settings.mongo_db]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
def ensure_indexes(db: Database) -> None:
    """
    Call once at startup.
    - users: unique username, unique email when present
    - ai_models: owner listing, public listing
    - datasets: one active dataset name per creator
    """
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True, sparse=True)

    db[AI_MODELS].create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db[AI_MODELS].create_index([("isPublic", ASCENDING), ("updatedAt", DESCENDING)])

    db[DATASETS].create_index(
        [("creator", ASCENDING), ("name", ASCENDING)],
        unique=True,
        partialFilterExpression={"isActive": True},
    )
    db[DATASETS].create_index([("sharedWith.user", ASCENDING)])
    log.info("MongoDB indexes ensured")
