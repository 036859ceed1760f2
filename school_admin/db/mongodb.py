"""
MongoDB Connection Utility

MongoDB stores:
- accounts: login credentials (username, email, bcrypt hash, role)
- persons:  profile data, references an account
- students: class membership, references a person

Student records span all three collections, so writes that touch more than
one of them go through transaction(). Transactions need a replica set (or a
sharded cluster); a standalone mongod rejects them.
"""
from contextlib import contextmanager
from typing import Iterator

import structlog
from pymongo import ASCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from school_admin.core.config import get_settings

logger = structlog.get_logger(__name__)

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(get_settings().mongodb_uri, tz_aware=True)
    return _client


def get_mongo_db() -> Database:
    """Get the configured database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[get_settings().mongodb_db]
    return _db


def get_collection(name: str) -> Collection:
    """Get a specific collection by its name (see COLLECTIONS)."""
    db = get_mongo_db()
    return db[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        # ping command checks connection
        client.admin.command('ping')
        return True
    except PyMongoError as e:
        logger.warning("mongo_connection_failed", error=str(e))
        return False


def supports_transactions() -> bool:
    """True when the deployment is a replica set or sharded cluster."""
    hello = get_mongo_client().admin.command("hello")
    return "setName" in hello or hello.get("msg") == "isdbgrid"


@contextmanager
def transaction() -> Iterator[ClientSession]:
    """
    Open a session with a running transaction.

    Commits when the block exits normally, aborts when it raises; the
    exception is re-raised to the caller.
    Usage:
        with transaction() as session:
            accounts.insert(doc, session=session)
    """
    client = get_mongo_client()
    with client.start_session() as session:
        with session.start_transaction():
            yield session


# Collection name constants (avoid typos)
COLLECTIONS = {
    "accounts": "accounts",
    "persons": "persons",
    "students": "students",
}


def init_mongo_indexes():
    """
    Create indexes. Call this once during app startup.
    The unique account indexes are what settle two concurrent sign-ups
    racing for the same username or email.
    """
    db = get_mongo_db()

    db[COLLECTIONS["accounts"]].create_index([("username", ASCENDING)], unique=True)
    db[COLLECTIONS["accounts"]].create_index([("email", ASCENDING)], unique=True)

    # Reverse lookups: person -> account owner, student -> person owner
    db[COLLECTIONS["persons"]].create_index("account", unique=True)
    db[COLLECTIONS["students"]].create_index("person", unique=True)

    logger.info("mongo_indexes_created")
