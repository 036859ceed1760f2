"""
Pydantic Schemas - Request/Response Validation

All API request and response schemas in one file for simplicity.
Entity fields travel as camelCase on the wire (mobileNumber, dateOfBirth)
and are stored snake_case in MongoDB.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import date, datetime
from enum import Enum


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    student = "student"
    teacher = "teacher"
    admin = "admin"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# ENTITY SCHEMAS (responses)
# ============================================================

class AccountOut(CamelModel):
    id: str
    username: str
    email: str
    role: UserRole
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class PersonOut(CamelModel):
    id: str
    name: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    mobile_number: Optional[str] = None
    school: Optional[str] = None
    address: Optional[str] = None
    image: Optional[str] = None
    account: Optional[AccountOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class StudentOut(CamelModel):
    id: str
    klass: Optional[str] = None
    person: Optional[PersonOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================
# STUDENT SCHEMAS (requests)
# ============================================================

class StudentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    mobile_number: Optional[str] = None
    school: Optional[str] = None
    address: Optional[str] = None
    image: Optional[str] = None
    username: str
    email: str
    password: str
    klass: str = Field(..., min_length=1)

class StudentUpdate(CamelModel):
    """Every field optional; only the ones sent are overwritten."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    mobile_number: Optional[str] = None
    school: Optional[str] = None
    address: Optional[str] = None
    image: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    klass: Optional[str] = Field(None, min_length=1)


# ============================================================
# AUTH SCHEMAS
# ============================================================

class LoginRequest(BaseModel):
    login: str = Field(..., description="Username or email")
    password: str


# ============================================================
# ENVELOPES
# ============================================================

class MessageResponse(BaseModel):
    success: bool = True
    message: str

class StudentCreatedResponse(MessageResponse):
    student: StudentOut
    person: PersonOut
    account: AccountOut

class StudentResponse(MessageResponse):
    student: StudentOut

class StudentListResponse(MessageResponse):
    students: List[StudentOut]

class TokenResponse(MessageResponse):
    access_token: str
    token_type: str = "bearer"
    role: UserRole

class MeResponse(MessageResponse):
    account: AccountOut
    person: Optional[PersonOut] = None
