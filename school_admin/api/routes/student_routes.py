"""
Student Routes

POST   /students        - Create student (account + person + student)
GET    /students        - List students with person data
GET    /students/{sid}  - Get one student
PUT    /students/{sid}  - Update student, person and account fields
DELETE /students/{sid}  - Delete student, its person and account

Handlers are plain `def`: pymongo is blocking, so FastAPI runs them in
its threadpool.
"""

from fastapi import APIRouter, Depends

from school_admin.services.student_service import StudentManager, get_student_manager
from school_admin.schemas.schemas import (
    StudentCreate, StudentUpdate, StudentCreatedResponse, StudentResponse,
    StudentListResponse, MessageResponse
)

router = APIRouter(prefix="/students", tags=["Students"])


@router.post("", response_model=StudentCreatedResponse, status_code=201)
def create_student(data: StudentCreate, manager: StudentManager = Depends(get_student_manager)):
    """Create a student with its person profile and login account."""
    student, person, account = manager.create(data)
    return StudentCreatedResponse(
        message="Student account created successfully",
        student=student, person=person, account=account,
    )


@router.get("", response_model=StudentListResponse)
def list_students(manager: StudentManager = Depends(get_student_manager)):
    return StudentListResponse(message="Get students list", students=manager.list())


@router.get("/{sid}", response_model=StudentResponse)
def get_student(sid: str, manager: StudentManager = Depends(get_student_manager)):
    return StudentResponse(message="Get student information", student=manager.get(sid))


@router.put("/{sid}", response_model=StudentResponse)
def update_student(sid: str, data: StudentUpdate, manager: StudentManager = Depends(get_student_manager)):
    """Update student. Only provided fields are overwritten."""
    student = manager.update(sid, data)
    return StudentResponse(message="Student information updated successfully", student=student)


@router.delete("/{sid}", response_model=MessageResponse)
def delete_student(sid: str, manager: StudentManager = Depends(get_student_manager)):
    manager.delete(sid)
    return MessageResponse(message="Student deleted successfully")
