"""
Credential Validation Service

Checks username / email / password before an account is written:
- syntax of each field
- password strength
- uniqueness of username and email across all accounts

On update the caller passes the account being edited as `exclude_account_id`
so a student keeping their own username or email is not flagged as a
duplicate. A field passed as None is treated as "unchanged" and skipped.
"""

import re
from typing import Optional

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict

from school_admin.services.mongo_service import AccountService

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{2,30}$")
MIN_PASSWORD_LENGTH = 8


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(success=True, message="Valid")

    @classmethod
    def fail(cls, message: str) -> "ValidationResult":
        return cls(success=False, message=message)


def check_username_syntax(username: str) -> Optional[str]:
    if not USERNAME_PATTERN.match(username):
        return "Username must be 2-30 characters: letters, digits, '_', '.' or '-'"
    return None


def check_email_syntax(email: str) -> Optional[str]:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        return f"Invalid email: {e}"
    return None


def check_password_strength(password: str) -> Optional[str]:
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not re.search(r"[a-z]", password):
        return "Password must contain a lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain an uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain a digit"
    return None


class CredentialValidator:
    """Validates account credentials against syntax rules and existing accounts."""

    def __init__(self, accounts: AccountService):
        self.accounts = accounts

    def validate(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        exclude_account_id: Optional[ObjectId] = None,
    ) -> ValidationResult:
        # Syntax first, so malformed input never costs a query
        checks = []
        if username is not None:
            checks.append(check_username_syntax(username))
        if email is not None:
            checks.append(check_email_syntax(email))
        if password is not None:
            checks.append(check_password_strength(password))
        for problem in checks:
            if problem:
                return ValidationResult.fail(problem)

        if username is not None and self.accounts.find_by_username(username, exclude_account_id):
            return ValidationResult.fail("Username already exists")
        if email is not None and self.accounts.find_by_email(email, exclude_account_id):
            return ValidationResult.fail("Email already exists")

        return ValidationResult.ok()
