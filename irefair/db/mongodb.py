"""
MongoDB Connection Utility

MongoDB stores uploaded resume files (the binary document plus its
metadata). Relational rows only keep the resume file id.
"""
import logging

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from irefair.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(settings.mongodb_uri)
    return _client


def set_mongo_client(client: MongoClient) -> None:
    """Replace the shared client (used by scripts and tests)."""
    global _client, _db
    _client = client
    _db = None


def get_mongo_db() -> Database:
    """Get the iRefair document database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[settings.mongodb_db]
    return _db


def get_collection(name: str) -> Collection:
    db = get_mongo_db()
    return db[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        client.admin.command('ping')
        return True
    except Exception as e:
        logger.error("MongoDB connection failed: %s", e)
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "resumes": "resume_files",
}


def init_mongo_indexes():
    """
    Create indexes for resume lookups.
    Call this once during app startup.
    """
    db = get_mongo_db()
    db[COLLECTIONS["resumes"]].create_index("file_id", unique=True)
    db[COLLECTIONS["resumes"]].create_index("owner_id")
    logger.info("MongoDB indexes created successfully")
