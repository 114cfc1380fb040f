"""
FastAPI application entry point.
"""

from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from incident_intake.config import settings
from incident_intake.api import errors
from incident_intake.models.api_response import HealthResponse
from incident_intake.utils.logging import setup_logging, get_logger

VERSION = "0.1.0"

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

app = FastAPI(
    title="Incident Intake Service",
    description="Client error ingestion, deduplication and remediation dispatch",
    version=VERSION
)

# Reports arrive from tenant websites on arbitrary origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint for container orchestration."""
    return HealthResponse(status="healthy", version=VERSION, timestamp=datetime.now(timezone.utc))


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Incident Intake Service API",
        "version": VERSION,
        "docs": "/docs"
    }


app.include_router(errors.router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("Starting Incident Intake Service API")
    await errors.error_monitor.initialize()
    logger.info("Error monitor initialized")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down Incident Intake Service API")
    await errors.error_monitor.close()
    logger.info("Error monitor closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
