"""
Main FastAPI application for the Footer Studio backend.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from .config import get_settings
from .exceptions import ExternalServiceError, JobValidationError, NotFoundError, PersistenceError
from .routers.health import router as health_router
from .routers.config import router as config_router
from .routers.diff import router as diff_router
from .routers.jobs import router as jobs_router
from .routers.tasks import router as tasks_router


settings = get_settings()
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Footer Studio API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router, prefix=settings.API_PREFIX)
app.include_router(config_router, prefix=settings.API_PREFIX)
app.include_router(jobs_router, prefix=settings.API_PREFIX)
app.include_router(diff_router, prefix=settings.API_PREFIX)
app.include_router(tasks_router, prefix=settings.API_PREFIX)


_STATUS_BY_ERROR = {
    JobValidationError: 400,
    NotFoundError: 404,
    PersistenceError: 503,
    ExternalServiceError: 503,
}


async def _domain_error(request: Request, exc: Exception) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


for _exc_type in _STATUS_BY_ERROR:
    app.add_exception_handler(_exc_type, _domain_error)


@app.get("/", tags=["root"])
async def root() -> dict:
    """Simple root endpoint."""
    return {"name": app.title, "version": app.version}
