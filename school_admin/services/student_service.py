"""
Student Lifecycle Service

A student record is three linked documents:

    Student --person--> Person --account--> Account

StudentManager keeps them consistent:
- create: validate credentials, then insert Account, Person and Student in
  one transaction. Either all three exist afterwards or none do.
- update: existence check first, re-validate credentials with the student's
  own account excluded from the uniqueness check, then apply the three
  $set updates in one transaction.
- delete: existence check first, then remove Person, Account and Student in
  one transaction.

The class identifier (`klass`) is stored as given; it is not checked
against any class collection.
"""

from datetime import date, datetime, time, timezone
from typing import Callable, ContextManager, List, Optional, Tuple

import structlog
from bson import ObjectId
from pymongo.client_session import ClientSession
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from school_admin.core.auth import hash_password
from school_admin.core.errors import NotFound, PersistenceError, ValidationFailed
from school_admin.db.mongodb import transaction as mongo_transaction
from school_admin.schemas.schemas import (
    AccountOut, PersonOut, StudentOut, StudentCreate, StudentUpdate, UserRole,
)
from school_admin.services.mongo_service import (
    AccountService, PersonService, StudentService, to_object_id,
)
from school_admin.services.validation_service import CredentialValidator

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = ("name", "date_of_birth", "gender", "mobile_number", "school", "address", "image")

# Update fields where an explicit null means "leave unchanged" rather than "clear"
NON_NULLABLE_FIELDS = ("name", "username", "email", "password", "klass")


# ============================================================
# SERIALIZATION (Mongo document -> response schema)
# ============================================================

def _dob_to_storage(value: Optional[date]) -> Optional[datetime]:
    # BSON has no date type; store midnight UTC
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _dob_from_storage(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


def account_out(doc: dict) -> AccountOut:
    """Account without its password hash."""
    return AccountOut(
        id=str(doc["_id"]),
        username=doc["username"],
        email=doc["email"],
        role=doc.get("role", UserRole.student),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def person_out(doc: dict, account: Optional[dict] = None) -> PersonOut:
    return PersonOut(
        id=str(doc["_id"]),
        name=doc["name"],
        date_of_birth=_dob_from_storage(doc.get("date_of_birth")),
        gender=doc.get("gender"),
        mobile_number=doc.get("mobile_number"),
        school=doc.get("school"),
        address=doc.get("address"),
        image=doc.get("image"),
        account=account_out(account) if account else None,
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def student_out(doc: dict, person: Optional[dict] = None, account: Optional[dict] = None) -> StudentOut:
    return StudentOut(
        id=str(doc["_id"]),
        klass=doc.get("klass"),
        person=person_out(person, account) if person else None,
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _duplicate_message(error: DuplicateKeyError) -> str:
    key_pattern = (error.details or {}).get("keyPattern") or {}
    if "email" in key_pattern:
        return "Email already exists"
    if "username" in key_pattern:
        return "Username already exists"
    return "Duplicate record"


WRITE_CONFLICT_CODE = 112


def _is_write_conflict(error: PyMongoError) -> bool:
    """Another open transaction touched the same document or unique key."""
    return isinstance(error, OperationFailure) and (
        error.code == WRITE_CONFLICT_CODE or error.has_error_label("TransientTransactionError")
    )


# ============================================================
# LIFECYCLE MANAGER
# ============================================================

class StudentManager:
    """
    Orchestrates the Account + Person + Student aggregate.

    Args:
        accounts / persons / students: per-collection document services
        validator: credential checks (syntax, strength, uniqueness)
        transaction: zero-arg factory returning a context manager that yields
            a session; commits on clean exit, aborts on exception
        password_hasher: one-way hash applied before an Account is written
    """

    def __init__(
        self,
        accounts: AccountService,
        persons: PersonService,
        students: StudentService,
        validator: Optional[CredentialValidator] = None,
        transaction: Callable[[], ContextManager[ClientSession]] = mongo_transaction,
        password_hasher: Callable[[str], str] = hash_password,
    ):
        self.accounts = accounts
        self.persons = persons
        self.students = students
        self.validator = validator or CredentialValidator(accounts)
        self.transaction = transaction
        self.password_hasher = password_hasher

    def _conflict_error(
        self,
        username: Optional[str],
        email: Optional[str],
        exclude_account_id: Optional[ObjectId] = None,
    ) -> Optional[ValidationFailed]:
        """
        Explain a write conflict on the account credentials.

        Re-runs the uniqueness check, which now sees whatever the competing
        transaction committed. Returns None when no credential was being
        written, i.e. the conflict is not the client's to fix.
        """
        validation = self.validator.validate(username, email, None, exclude_account_id=exclude_account_id)
        if not validation.success:
            return ValidationFailed(validation.message)
        if username is not None or email is not None:
            return ValidationFailed("Username or email already in use")
        return None

    # ---------- reads ----------

    def _get_student_doc(self, student_id: str) -> dict:
        oid = to_object_id(student_id)
        student = self.students.get_by_id(oid) if oid is not None else None
        if not student:
            raise NotFound("Student not found")
        return student

    def _load_owned(self, student_id: str) -> Tuple[dict, dict, dict]:
        """Student, its Person and that Person's Account; NotFound if any link is broken."""
        student = self._get_student_doc(student_id)
        person = self.persons.get_by_id(student["person"])
        account = self.accounts.get_by_id(person["account"]) if person else None
        if not person or not account:
            logger.warning("student_links_broken", student_id=str(student["_id"]))
            raise NotFound("Student not found")
        return student, person, account

    def get(self, student_id: str) -> StudentOut:
        student = self._get_student_doc(student_id)
        person = self.persons.get_by_id(student["person"])
        account = self.accounts.get_by_id(person["account"]) if person else None
        return student_out(student, person, account)

    def list(self) -> List[StudentOut]:
        """All students with their person (and account) embedded, natural order."""
        students = self.students.find_all()
        persons = {p["_id"]: p for p in self.persons.get_many({s["person"] for s in students})}
        accounts = {a["_id"]: a for a in self.accounts.get_many({p["account"] for p in persons.values()})}

        result = []
        for student in students:
            person = persons.get(student["person"])
            account = accounts.get(person["account"]) if person else None
            result.append(student_out(student, person, account))
        return result

    # ---------- writes ----------

    def create(self, data: StudentCreate) -> Tuple[StudentOut, PersonOut, AccountOut]:
        validation = self.validator.validate(data.username, data.email, data.password)
        if not validation.success:
            raise ValidationFailed(validation.message)

        account_doc = {
            "username": data.username,
            "email": data.email.lower(),
            "password": self.password_hasher(data.password),
            "role": UserRole.student.value,
        }
        person_doc = {field: getattr(data, field) for field in PROFILE_FIELDS}
        person_doc["date_of_birth"] = _dob_to_storage(data.date_of_birth)

        try:
            with self.transaction() as session:
                account_id = self.accounts.insert(account_doc, session=session)
                person_id = self.persons.insert({**person_doc, "account": account_id}, session=session)
                student_id = self.students.insert(
                    {"person": person_id, "klass": data.klass}, session=session
                )
        except DuplicateKeyError as e:
            # Lost a race with a concurrent create for the same username/email
            logger.info("student_create_conflict", username=data.username)
            raise ValidationFailed(_duplicate_message(e)) from e
        except PyMongoError as e:
            if _is_write_conflict(e):
                logger.info("student_create_conflict", username=data.username, code=e.code)
                raise self._conflict_error(data.username, data.email) from e
            logger.error("student_create_failed", username=data.username, error=str(e))
            raise PersistenceError("Error creating student account") from e

        logger.info(
            "student_created",
            student_id=str(student_id), person_id=str(person_id), account_id=str(account_id),
        )

        account = self.accounts.get_by_id(account_id)
        person = self.persons.get_by_id(person_id)
        student = self.students.get_by_id(student_id)
        return student_out(student, person, account), person_out(person, account), account_out(account)

    def update(self, student_id: str, data: StudentUpdate) -> StudentOut:
        student, person, account = self._load_owned(student_id)

        fields = data.model_dump(exclude_unset=True)
        for key in NON_NULLABLE_FIELDS:
            if fields.get(key, ...) is None:
                del fields[key]

        validation = self.validator.validate(
            fields.get("username"),
            fields.get("email"),
            fields.get("password"),
            exclude_account_id=account["_id"],
        )
        if not validation.success:
            raise ValidationFailed(validation.message)

        student_set = {"klass": fields["klass"]} if "klass" in fields else {}
        person_set = {k: fields[k] for k in PROFILE_FIELDS if k in fields}
        if "date_of_birth" in person_set:
            person_set["date_of_birth"] = _dob_to_storage(person_set["date_of_birth"])
        account_set = {}
        if "username" in fields:
            account_set["username"] = fields["username"]
        if "email" in fields:
            account_set["email"] = fields["email"].lower()
        if "password" in fields:
            account_set["password"] = self.password_hasher(fields["password"])

        if student_set or person_set or account_set:
            try:
                with self.transaction() as session:
                    if student_set:
                        self.students.update_fields(student["_id"], student_set, session=session)
                    if person_set:
                        self.persons.update_fields(person["_id"], person_set, session=session)
                    if account_set:
                        self.accounts.update_fields(account["_id"], account_set, session=session)
            except DuplicateKeyError as e:
                logger.info("student_update_conflict", student_id=str(student["_id"]))
                raise ValidationFailed(_duplicate_message(e)) from e
            except PyMongoError as e:
                if _is_write_conflict(e):
                    conflict = self._conflict_error(
                        account_set.get("username"), account_set.get("email"), account["_id"]
                    )
                    if conflict is not None:
                        logger.info("student_update_conflict", student_id=str(student["_id"]), code=e.code)
                        raise conflict from e
                logger.error("student_update_failed", student_id=str(student["_id"]), error=str(e))
                raise PersistenceError("Error updating student information") from e

            logger.info(
                "student_updated",
                student_id=str(student["_id"]),
                fields=sorted(set(student_set) | set(person_set) | set(account_set)),
            )

        return self.get(str(student["_id"]))

    def delete(self, student_id: str) -> None:
        student = self._get_student_doc(student_id)
        person = self.persons.get_by_id(student["person"])

        try:
            with self.transaction() as session:
                if person:
                    self.persons.delete(person["_id"], session=session)
                    self.accounts.delete(person["account"], session=session)
                self.students.delete(student["_id"], session=session)
        except PyMongoError as e:
            logger.error("student_delete_failed", student_id=str(student["_id"]), error=str(e))
            raise PersistenceError("Error deleting student") from e

        logger.info("student_deleted", student_id=str(student["_id"]), orphaned=person is None)


def get_student_manager() -> StudentManager:
    """FastAPI dependency - manager wired to the live MongoDB collections."""
    accounts = AccountService()
    return StudentManager(
        accounts=accounts,
        persons=PersonService(),
        students=StudentService(),
        validator=CredentialValidator(accounts),
    )
