"""
MongoDB connection.

`db` stays None when DATABASE_URL is not set; callers go through `collection()`,
which turns that into a StoreUnavailableError.
"""
import logging

from pymongo import ASCENDING, DESCENDING, MongoClient

import config
from exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

TRAINEE_COLLECTION = "trainee"

client = None
db = None

if config.DATABASE_URL:
    # MongoClient connects lazily; the first command surfaces connectivity errors
    client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[config.DATABASE_NAME]


def collection(name: str):
    if db is None:
        raise StoreUnavailableError("Database not configured")
    return db[name]


def ensure_indexes() -> None:
    """Create the unique keys the import and sign-up flows rely on."""
    trainees = collection(TRAINEE_COLLECTION)
    trainees.create_index([("email", ASCENDING)], unique=True, name="uq_email")
    trainees.create_index([("full_name", ASCENDING)], unique=True, name="uq_full_name")
    trainees.create_index([("role", ASCENDING), ("created_at", DESCENDING)], name="idx_role_created")
    logger.info("Indexes ensured on %s", TRAINEE_COLLECTION)
