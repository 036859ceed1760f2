"""
MongoDB Service - CRUD operations for document collections.

Collections in this database:
1. accounts  - credentials; username and email are unique
2. persons   - profile data; `account` holds the owning Account _id
3. students  - class membership; `person` holds the owning Person _id

Every method takes an optional pymongo session so the lifecycle manager can
run several of them inside one transaction.
"""

from datetime import datetime, timezone
from typing import Optional, List, Iterable, Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.client_session import ClientSession
from pymongo.collection import Collection

from school_admin.db.mongodb import get_collection, COLLECTIONS


# ============================================================
# HELPERS
# ============================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a client-supplied id. Returns None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


# ============================================================
# BASE SERVICE
# ============================================================

class DocumentService:
    """
    Session-aware CRUD over one collection.
    Subclasses set `collection_key` to an entry of COLLECTIONS.
    """

    collection_key: str = None

    def __init__(self, collection: Collection = None):
        self.collection: Collection = (
            collection if collection is not None
            else get_collection(COLLECTIONS[self.collection_key])
        )

    def insert(self, doc: dict, session: ClientSession = None) -> ObjectId:
        """Insert a document, stamping created_at/updated_at. Returns its _id."""
        now = utcnow()
        doc = {**doc, "created_at": now, "updated_at": now}
        result = self.collection.insert_one(doc, session=session)
        return result.inserted_id

    def get_by_id(self, doc_id: ObjectId, session: ClientSession = None) -> Optional[dict]:
        return self.collection.find_one({"_id": doc_id}, session=session)

    def get_many(self, ids: Iterable[ObjectId], session: ClientSession = None) -> List[dict]:
        ids = list(ids)
        if not ids:
            return []
        return list(self.collection.find({"_id": {"$in": ids}}, session=session))

    def find_all(self, session: ClientSession = None) -> List[dict]:
        """All documents in natural storage order."""
        return list(self.collection.find({}, session=session))

    def update_fields(self, doc_id: ObjectId, fields: dict, session: ClientSession = None) -> bool:
        """$set the given fields. Returns True if the document exists."""
        result = self.collection.update_one(
            {"_id": doc_id},
            {"$set": {**fields, "updated_at": utcnow()}},
            session=session,
        )
        return result.matched_count > 0

    def delete(self, doc_id: ObjectId, session: ClientSession = None) -> bool:
        result = self.collection.delete_one({"_id": doc_id}, session=session)
        return result.deleted_count > 0


# ============================================================
# ACCOUNTS COLLECTION
# ============================================================

class AccountService(DocumentService):
    """
    Handles account storage.
    Passwords arrive here already hashed.
    """

    collection_key = "accounts"

    def _find_excluding(self, field: str, value: str, exclude_id: ObjectId = None,
                        session: ClientSession = None) -> Optional[dict]:
        query = {field: value}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return self.collection.find_one(query, session=session)

    def find_by_username(self, username: str, exclude_id: ObjectId = None,
                         session: ClientSession = None) -> Optional[dict]:
        """Fetch account by username, optionally ignoring one account."""
        return self._find_excluding("username", username, exclude_id, session)

    def find_by_email(self, email: str, exclude_id: ObjectId = None,
                      session: ClientSession = None) -> Optional[dict]:
        """Fetch account by (lower-cased) email, optionally ignoring one account."""
        return self._find_excluding("email", email.lower(), exclude_id, session)

    def find_by_login(self, login: str) -> Optional[dict]:
        """Login accepts either a username or an email."""
        if "@" in login:
            return self.find_by_email(login)
        return self.find_by_username(login)


# ============================================================
# PERSONS COLLECTION
# ============================================================

class PersonService(DocumentService):
    collection_key = "persons"

    def get_by_account(self, account_id: ObjectId, session: ClientSession = None) -> Optional[dict]:
        return self.collection.find_one({"account": account_id}, session=session)


# ============================================================
# STUDENTS COLLECTION
# ============================================================

class StudentService(DocumentService):
    collection_key = "students"


# ============================================================
# FASTAPI DEPENDENCIES
# Overridden in tests via app.dependency_overrides
# ============================================================

def get_account_service() -> AccountService:
    return AccountService()


def get_person_service() -> PersonService:
    return PersonService()
