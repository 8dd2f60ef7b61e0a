"""FastAPI main application."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import snapshots
from app.config import settings
from app.database import engine, Base
from app import models  # noqa: F401

logging.basicConfig(level=settings.log_level)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Agency Monthly Reports", version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(snapshots.router, prefix="/api", tags=["snapshots"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}
