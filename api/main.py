"""
Campaign Assignment API - Main Application.

Serves the assignment triggers (daily scheduler and dashboard), the batch
controls and the audit log under /api/v1/assignment.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Campaign Assignment API",
    description="Assigns qualified contacts to their platform's outbound email campaign",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# TODO: Restrict origins to the dashboard host once it has a fixed domain
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness probe for the scheduler and the platform workers."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "campaign-assignment-api"
    }


@app.get("/", tags=["Root"])
def root():
    return {
        "message": "Campaign Assignment API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "endpoints": "/api/v1/assignment"
    }


from api.routers import assignment  # noqa: E402

app.include_router(assignment.router, prefix="/api/v1", tags=["Campaign Assignment"])
