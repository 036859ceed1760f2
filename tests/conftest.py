import copy
from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from school_admin.main import app
from school_admin.services.mongo_service import (
    AccountService, PersonService, StudentService,
    get_account_service, get_person_service,
)
from school_admin.services.student_service import StudentManager, get_student_manager


def _matches(doc, query):
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$ne" in cond and value == cond["$ne"]:
                return False
        elif value != cond:
            return False
    return True


class InMemoryCollection:
    """
    Stand-in for a pymongo Collection covering the calls the services make.
    Unique fields raise DuplicateKeyError like a unique index would.
    Set `fail_on[method_name] = exc` to make the next call to that method raise.
    """

    def __init__(self, unique_fields=()):
        self.docs = {}
        self.unique_fields = unique_fields
        self.fail_on = {}

    def _maybe_fail(self, method):
        exc = self.fail_on.pop(method, None)
        if exc is not None:
            raise exc

    def _check_unique(self, doc):
        for field in self.unique_fields:
            for other in self.docs.values():
                if other["_id"] != doc["_id"] and other.get(field) == doc.get(field):
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error dup key: {{ {field}: {doc.get(field)!r} }}",
                        11000,
                        {"keyPattern": {field: 1}, "keyValue": {field: doc.get(field)}},
                    )

    def insert_one(self, doc, session=None):
        self._maybe_fail("insert_one")
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    def find_one(self, query, session=None):
        self._maybe_fail("find_one")
        for doc in self.docs.values():
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query, session=None):
        self._maybe_fail("find")
        return [copy.deepcopy(d) for d in self.docs.values() if _matches(d, query)]

    def update_one(self, query, update, session=None):
        self._maybe_fail("update_one")
        for doc in self.docs.values():
            if _matches(doc, query):
                updated = {**doc, **update.get("$set", {})}
                self._check_unique(updated)
                self.docs[doc["_id"]] = updated
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def delete_one(self, query, session=None):
        self._maybe_fail("delete_one")
        for doc_id, doc in list(self.docs.items()):
            if _matches(doc, query):
                del self.docs[doc_id]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class InMemoryDatabase:
    def __init__(self):
        self.accounts = InMemoryCollection(unique_fields=("username", "email"))
        self.persons = InMemoryCollection(unique_fields=("account",))
        self.students = InMemoryCollection(unique_fields=("person",))
        self.commits = 0
        self.aborts = 0

    @property
    def collections(self):
        return (self.accounts, self.persons, self.students)

    @contextmanager
    def transaction(self):
        """Snapshot on entry, restore on error: all-or-nothing like a Mongo transaction."""
        snapshot = [copy.deepcopy(c.docs) for c in self.collections]
        try:
            yield SimpleNamespace(in_transaction=True)
        except Exception:
            for collection, docs in zip(self.collections, snapshot):
                collection.docs = docs
            self.aborts += 1
            raise
        self.commits += 1


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def manager(db):
    return StudentManager(
        accounts=AccountService(db.accounts),
        persons=PersonService(db.persons),
        students=StudentService(db.students),
        transaction=db.transaction,
    )


@pytest.fixture
def client(db, manager):
    app.dependency_overrides[get_student_manager] = lambda: manager
    app.dependency_overrides[get_account_service] = lambda: AccountService(db.accounts)
    app.dependency_overrides[get_person_service] = lambda: PersonService(db.persons)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def student_payload():
    return {
        "name": "An Nguyen",
        "dateOfBirth": "2008-05-14",
        "gender": "female",
        "mobileNumber": "0901234567",
        "school": "Le Loi High School",
        "address": "12 Tran Hung Dao",
        "username": "a1",
        "email": "a1@x.com",
        "password": "Secret123",
        "klass": "C1",
    }
