import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, PyMongoError

from school_admin.core.errors import NotFound, PersistenceError, ValidationFailed
from school_admin.schemas.schemas import StudentCreate, StudentUpdate
from school_admin.services.mongo_service import AccountService, PersonService, StudentService
from school_admin.services.student_service import StudentManager
from school_admin.services.validation_service import ValidationResult


class AlwaysValid:
    """Validator that lets everything through, as if the uniqueness check raced"""

    def validate(self, username, email, password, exclude_account_id=None):
        return ValidationResult.ok()


def _create_data(**overrides):
    data = {
        "name": "Binh Le",
        "username": "binh",
        "email": "binh@school.vn",
        "password": "Passw0rdX",
        "klass": "10A1",
    }
    data.update(overrides)
    return StudentCreate(**data)


def test_create_links_documents(manager, db):
    student, person, account = manager.create(_create_data())

    assert student.person.id == person.id
    assert person.account.id == account.id
    stored_student = db.students.docs[ObjectId(student.id)]
    stored_person = db.persons.docs[ObjectId(person.id)]
    assert stored_student["person"] == stored_person["_id"]
    assert stored_person["account"] == ObjectId(account.id)
    assert db.commits == 1


@pytest.mark.parametrize("failing", ["accounts", "persons", "students"])
def test_create_is_atomic(manager, db, failing):
    """Whichever of the three inserts fails, nothing from the attempt remains"""
    getattr(db, failing).fail_on["insert_one"] = PyMongoError("write failed")

    with pytest.raises(PersistenceError):
        manager.create(_create_data())

    assert db.accounts.docs == {}
    assert db.persons.docs == {}
    assert db.students.docs == {}


def test_concurrent_duplicate_username_loses_with_validation_error(db):
    """Two creates that both pass validation: the unique index decides, loser gets a 400"""
    manager = StudentManager(
        accounts=AccountService(db.accounts),
        persons=PersonService(db.persons),
        students=StudentService(db.students),
        validator=AlwaysValid(),
        transaction=db.transaction,
        password_hasher=lambda p: "hashed:" + p,
    )
    manager.create(_create_data())

    with pytest.raises(ValidationFailed) as exc_info:
        manager.create(_create_data(email="binh2@school.vn"))

    assert exc_info.value.message == "Username already exists"
    assert len(db.accounts.docs) == 1
    assert len(db.persons.docs) == 1
    assert len(db.students.docs) == 1


def test_create_does_not_check_class_existence(manager):
    student, _, _ = manager.create(_create_data(klass="no-such-class"))
    assert student.klass == "no-such-class"


def test_update_missing_student_fails_before_lookups(manager, db):
    db.persons.fail_on["find_one"] = AssertionError("person looked up before existence check")

    with pytest.raises(NotFound):
        manager.update(str(ObjectId()), StudentUpdate(klass="10A2"))


def test_update_is_atomic(manager, db):
    """A failing account update rolls back the student and person updates"""
    student, _, _ = manager.create(_create_data())
    db.accounts.fail_on["update_one"] = PyMongoError("write failed")

    with pytest.raises(PersistenceError):
        manager.update(student.id, StudentUpdate(klass="10A2", name="Binh Tran", username="binhtran"))

    current = manager.get(student.id)
    assert current.klass == "10A1"
    assert current.person.name == "Binh Le"
    assert current.person.account.username == "binh"


def test_update_ignores_null_credentials(manager):
    student, _, _ = manager.create(_create_data())

    updated = manager.update(student.id, StudentUpdate(username=None, email=None, school="THPT Chu Van An"))

    assert updated.person.account.username == "binh"
    assert updated.person.school == "THPT Chu Van An"


def test_update_with_nothing_to_change_skips_transaction(manager, db):
    student, _, _ = manager.create(_create_data())

    manager.update(student.id, StudentUpdate())

    assert db.commits == 1


def test_update_student_with_broken_links_is_not_found(manager, db):
    student, person, _ = manager.create(_create_data())
    del db.persons.docs[ObjectId(person.id)]

    with pytest.raises(NotFound):
        manager.update(student.id, StudentUpdate(klass="10A2"))


def test_delete_is_atomic(manager, db):
    student, _, _ = manager.create(_create_data())
    db.students.fail_on["delete_one"] = PyMongoError("write failed")

    with pytest.raises(PersistenceError):
        manager.delete(student.id)

    assert len(db.accounts.docs) == 1
    assert len(db.persons.docs) == 1
    assert len(db.students.docs) == 1


def test_delete_orphaned_student(manager, db):
    """A student whose person is already gone can still be deleted"""
    student, person, _ = manager.create(_create_data())
    del db.persons.docs[ObjectId(person.id)]

    manager.delete(student.id)

    assert db.students.docs == {}


def test_get_student_with_missing_person(manager, db):
    student, person, _ = manager.create(_create_data())
    del db.persons.docs[ObjectId(person.id)]

    assert manager.get(student.id).person is None


def _write_conflict():
    return OperationFailure(
        "WriteConflict error: this operation conflicted with another operation",
        112,
        {"errorLabels": ["TransientTransactionError"]},
    )


class WinnerCommitsDuringCreate:
    """Passes the first check; by the second the competing create has committed"""

    def __init__(self):
        self.calls = 0

    def validate(self, username, email, password, exclude_account_id=None):
        self.calls += 1
        if self.calls == 1:
            return ValidationResult.ok()
        return ValidationResult.fail("Username already exists")


def _manager_with(db, validator):
    return StudentManager(
        accounts=AccountService(db.accounts),
        persons=PersonService(db.persons),
        students=StudentService(db.students),
        validator=validator,
        transaction=db.transaction,
        password_hasher=lambda p: "hashed:" + p,
    )


def test_create_write_conflict_is_validation_error(manager, db):
    """An uncommitted competing create surfaces as a write conflict, still a 400"""
    db.accounts.fail_on["insert_one"] = _write_conflict()

    with pytest.raises(ValidationFailed) as exc_info:
        manager.create(_create_data())

    assert exc_info.value.message == "Username or email already in use"
    assert db.accounts.docs == {}
    assert db.persons.docs == {}
    assert db.students.docs == {}


def test_create_write_conflict_reports_committed_duplicate(db):
    validator = WinnerCommitsDuringCreate()
    manager = _manager_with(db, validator)
    db.accounts.fail_on["insert_one"] = _write_conflict()

    with pytest.raises(ValidationFailed) as exc_info:
        manager.create(_create_data())

    assert exc_info.value.message == "Username already exists"
    assert validator.calls == 2


def test_update_duplicate_email_from_unique_index(db):
    """Index violation on update (check raced) maps to a validation error"""
    manager = _manager_with(db, AlwaysValid())
    manager.create(_create_data())
    other, _, _ = manager.create(_create_data(username="chi", email="chi@school.vn"))

    with pytest.raises(ValidationFailed) as exc_info:
        manager.update(other.id, StudentUpdate(email="binh@school.vn", klass="10A9"))

    assert exc_info.value.message == "Email already exists"
    current = manager.get(other.id)
    assert current.klass == "10A1"
    assert current.person.account.email == "chi@school.vn"


def test_update_write_conflict_on_credentials_is_validation_error(manager, db):
    student, _, _ = manager.create(_create_data())
    db.accounts.fail_on["update_one"] = _write_conflict()

    with pytest.raises(ValidationFailed) as exc_info:
        manager.update(student.id, StudentUpdate(username="binh2"))

    assert exc_info.value.message == "Username or email already in use"
    assert manager.get(student.id).person.account.username == "binh"


def test_update_write_conflict_without_credentials_is_server_error(manager, db):
    """Concurrent edits of profile fields are not a client input problem"""
    student, _, _ = manager.create(_create_data())
    db.students.fail_on["update_one"] = _write_conflict()

    with pytest.raises(PersistenceError):
        manager.update(student.id, StudentUpdate(klass="10A2"))


def test_delete_malformed_id_is_not_found(manager):
    with pytest.raises(NotFound):
        manager.delete("not-an-object-id")
