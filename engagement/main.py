import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engagement.api import router
from engagement.core.config import settings
from engagement.core.database import create_tables
from engagement.core.exceptions import DataUnavailable

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    await create_tables()
    logger.info("%s ready (timezone %s)", settings.app_name, settings.timezone)
    yield


app = FastAPI(
    lifespan=lifespan,
    title=settings.app_name,
    description="Student engagement scoring: XP, levels, achievements, challenges and leaderboards",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DataUnavailable)
async def data_unavailable_handler(request: Request, exc: DataUnavailable) -> JSONResponse:
    """Store failures are transient; tell the client to retry."""
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=503,
        content={"detail": exc.detail, "retryable": exc.retryable},
    )


# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs",
    }
