import logging

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import ApiError

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")


def get_db():
    if db is None:
        raise ApiError("Database not configured")
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index(
        [("registrationNumber", ASCENDING)],
        unique=True,
        partialFilterExpression={"role": "student"},
    )
    database["internship"].create_index([("student", ASCENDING)])
    database["internship"].create_index([("createdAt", DESCENDING)])


def serialize(doc: dict) -> dict:
    """Copy a Mongo document into a JSON-friendly dict (ObjectIds become strings)."""
    out = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, dict):
            value = serialize(value)
        out[key] = value
    return out
