"""TaskPulse Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import get_settings
from ..database import init_db
from ..errors import TrackerError
from .responses import error_response
from .routers import (
    bot,
    changelogs,
    modules,
    notes,
    notifications,
    projects,
    sprints,
    tasks,
    timesheets,
    users,
)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskpulse-core")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TaskPulse Core API")
    init_db()
    yield
    logger.info("TaskPulse Core API stopped")


# Create FastAPI app
app = FastAPI(
    title="TaskPulse Core API",
    description="Project tracking: tasks, sprints, workload caps, activity feeds",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(400, "VALIDATION_ERROR", "Invalid request", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"{request.method} {request.url.path} hit a constraint: {exc.orig}")
    return error_response(409, "CONFLICT", "Conflicts with existing data")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(500, "INTERNAL_ERROR", "Internal server error")


# Include all business logic routers with /api/v1 prefix
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(modules.router, prefix="/api/v1/modules")
app.include_router(sprints.router, prefix="/api/v1/sprints")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(timesheets.router, prefix="/api/v1/timesheets")
app.include_router(notifications.router, prefix="/api/v1/notifications")
app.include_router(notes.router, prefix="/api/v1/notes")
app.include_router(changelogs.router, prefix="/api/v1/changelogs")
app.include_router(bot.router, prefix="/api/v1/bot")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "TaskPulse Core API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
