"""
Authentication Routes

POST /auth/login - Login with username or email, get JWT token
GET  /auth/me    - Get current account and its person profile
"""

from fastapi import APIRouter, Depends

from school_admin.core.auth import verify_password, create_access_token, get_current_account
from school_admin.core.errors import AuthenticationFailed
from school_admin.services.mongo_service import (
    AccountService, PersonService, get_account_service, get_person_service
)
from school_admin.services.student_service import account_out, person_out
from school_admin.schemas.schemas import LoginRequest, TokenResponse, MeResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    """
    Login and receive JWT access token.

    Include token in requests: Authorization: Bearer <token>
    """
    account = accounts.find_by_login(request.login)

    if not account or not verify_password(request.password, account["password"]):
        raise AuthenticationFailed("Invalid username/email or password")

    token = create_access_token(data={"sub": str(account["_id"]), "role": account["role"]})

    return TokenResponse(message="Login successful", access_token=token, role=account["role"])


@router.get("/me", response_model=MeResponse)
def get_me(
    account: dict = Depends(get_current_account),
    persons: PersonService = Depends(get_person_service),
):
    """Get current authenticated account with its person profile."""
    person = persons.get_by_account(account["_id"])
    return MeResponse(
        message="Current account",
        account=account_out(account),
        person=person_out(person) if person else None,
    )
