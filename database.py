import logging

from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

import config

logger = logging.getLogger(__name__)

client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[config.DATABASE_NAME]


def ensure_indexes(database) -> None:
    """Unique username/email on users, product lookup on reviews."""
    try:
        database["user"].create_index([("username", ASCENDING)], unique=True)
        database["user"].create_index([("email", ASCENDING)], unique=True)
        database["review"].create_index([("product_id", ASCENDING), ("created_at", ASCENDING)])
        database["product"].create_index([("seller_id", ASCENDING)])
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
