import logging

from pymongo import ASCENDING, DESCENDING, MongoClient

from models import ACCOUNTS, INCIDENTS, REVOKED_TOKENS, USERS

logger = logging.getLogger(__name__)


def connect(mongo_url: str, db_name: str):
    """Open a client and return the database handle; pymongo connects lazily."""
    client = MongoClient(mongo_url, tz_aware=True)
    logger.info("Using MongoDB database %s", db_name)
    return client[db_name]


def ensure_indexes(db):
    # Unique keys back the atomic insert-if-absent paths.
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[ACCOUNTS].create_index([("email", ASCENDING)], unique=True)
    db[INCIDENTS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db[REVOKED_TOKENS].create_index([("jti", ASCENDING)], unique=True)
    db[REVOKED_TOKENS].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
