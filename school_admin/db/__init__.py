"""
Database module - MongoDB connection and transactions.
"""
from school_admin.db.mongodb import get_mongo_db, test_mongo_connection, transaction

__all__ = [
    "get_mongo_db",
    "test_mongo_connection",
    "transaction",
]
