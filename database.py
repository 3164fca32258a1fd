"""
MongoDB connection

One client per process. Route handlers receive the database through the
``get_db`` dependency so tests can swap in another database.
"""

import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    database["product"].create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    database["category"].create_index("name", unique=True)
    database["cart_item"].create_index([("cart_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["user"].create_index("username", unique=True)
    database["user"].create_index("email", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["uploaded_file"].create_index("product_id")
    logger.debug("Indexes ensured on %s", database.name)
