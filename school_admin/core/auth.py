"""
Authentication Utility - JWT and Password handling.

Provides:
- Password hashing with bcrypt
- JWT token creation/verification
- FastAPI dependency for protected routes
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from school_admin.core.config import get_settings
from school_admin.core.errors import AuthenticationFailed
from school_admin.services.mongo_service import AccountService, get_account_service, to_object_id

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer token extractor; missing header is reported by get_current_account
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    """
    FastAPI dependency - Get the authenticated account document.

    Usage:
        @router.get("/protected")
        def route(account: dict = Depends(get_current_account)):
            return account
    """
    if credentials is None:
        raise AuthenticationFailed("Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload:
        raise AuthenticationFailed()

    account_id = to_object_id(payload.get("sub"))
    if account_id is None:
        raise AuthenticationFailed()

    # Verify account still exists
    account = accounts.get_by_id(account_id)
    if not account:
        raise AuthenticationFailed()

    return account
