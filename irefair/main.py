"""
iRefair - Main Application

FastAPI backend with:
- Relational database for applicants, referrers, applications and matches
- MongoDB for uploaded resumes
- Redis for rate limiting
- Signed magic-link tokens for the referrer and applicant portals
- Founder console behind a session cookie

Run: uvicorn irefair.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from irefair.api.routes import api_router
from irefair.core.config import get_settings
from irefair.core.rate_limit import get_redis_client, test_redis_connection
from irefair.db.mongodb import init_mongo_indexes, test_mongo_connection
from irefair.db.postgres import test_postgres_connection
from irefair.db.schema import init_db

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and MongoDB indexes on startup."""
    init_db()
    logger.info("Database tables initialized")
    try:
        init_mongo_indexes()
    except Exception as e:
        logger.warning("MongoDB index initialization failed: %s", e)
    yield


# Create FastAPI app
app = FastAPI(
    title="iRefair",
    description="""
    Referral matching between job applicants and corporate referrers.

    ## Features
    - **Applicants**: Registration with email confirmation, profile updates, mobile sign-in
    - **Referrers**: Registration, company approval, portal with feedback actions
    - **Applications**: Apply to approved companies with a CV
    - **Founder console**: Review applicants, referrers, companies, applications and matches
    - **Cron**: Cleanup of expired registrations and confirmation reminders
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# ERROR SHAPE: {"ok": false, "error": "..."}
# ============================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = {"ok": False, **exc.detail}
    else:
        content = {"ok": False, "error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"ok": False, "error": "Invalid request."})


# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/", tags=["Health"])
async def root():
    return {"status": "healthy", "app": "iRefair"}


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected" if test_postgres_connection() else "disconnected",
        "mongodb": "connected" if test_mongo_connection() else "disconnected",
        "redis": "connected" if test_redis_connection() else ("disabled" if get_redis_client() is None else "disconnected"),
    }
