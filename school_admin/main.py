"""
School Administration Backend - Main Application

FastAPI backend with:
- MongoDB for accounts, persons and students
- Transactional student lifecycle (account + person + student)
- JWT authentication
- structlog request logging

Run: uvicorn school_admin.main:app --reload
"""

import time

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from school_admin import __version__
from school_admin.api.routes import api_router
from school_admin.core.config import get_settings
from school_admin.core.errors import register_exception_handlers
from school_admin.core.logging import configure_logging
from school_admin.db.mongodb import init_mongo_indexes, test_mongo_connection

settings = get_settings()
configure_logging()
logger = structlog.get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="School Administration API",
    description="""
    CRUD backend for school administration.

    ## Features
    - **Students**: create, list, read, update and delete student records.
      Each student is an account + person + student document set, written atomically.
    - **Authentication**: JWT login for accounts (username or email)

    ## Database
    - MongoDB replica set (transactions required)
    """,
    version=__version__,
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware (allow all for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.perf_counter()
    # Unhandled exceptions surface as 500 further out
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )


# Include API routes
app.include_router(api_router, prefix="/api")


# Startup event
@app.on_event("startup")
def startup_event():
    """Initialize MongoDB indexes on startup."""
    try:
        init_mongo_indexes()
    except PyMongoError as e:
        logger.warning("mongo_index_init_failed", error=str(e))


@app.get("/health", tags=["Health"])
def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "mongodb": "connected" if test_mongo_connection() else "disconnected"
    }
