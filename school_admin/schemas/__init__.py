"""
Schemas module - Request/Response schemas for API endpoints.
"""
from school_admin.schemas.schemas import (
    AccountOut, PersonOut, StudentOut,
    StudentCreate, StudentUpdate, LoginRequest,
    MessageResponse, StudentCreatedResponse, StudentResponse,
    StudentListResponse, TokenResponse, MeResponse, UserRole,
)

__all__ = [
    "AccountOut", "PersonOut", "StudentOut",
    "StudentCreate", "StudentUpdate", "LoginRequest",
    "MessageResponse", "StudentCreatedResponse", "StudentResponse",
    "StudentListResponse", "TokenResponse", "MeResponse", "UserRole",
]
