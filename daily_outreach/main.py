"""
Daily Outreach Backend - FastAPI Application
Main entry point with all routes configured.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from daily_outreach.config import settings
from daily_outreach.database import init_db
from daily_outreach.core.exceptions import OutreachException
from daily_outreach.schemas.common import HealthResponse

# Import all API routers
from daily_outreach.api import daily_outreach

logging.basicConfig(
    level=logging.DEBUG if settings.DEV_MODE else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await init_db()
    logger.info("Daily Outreach API started")
    yield
    # Shutdown


app = FastAPI(
    title="Daily Outreach API",
    description="Daily batches of pre-written outreach emails, streaks and scheduling",
    version=VERSION,
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OutreachException)
async def outreach_exception_handler(request: Request, exc: OutreachException):
    """Render domain errors as {"detail": message} with their HTTP status."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include all routers
app.include_router(daily_outreach.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Daily Outreach API is running",
        "version": VERSION,
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Detailed health check."""
    return HealthResponse(status="healthy", version=VERSION)
