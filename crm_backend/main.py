"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_backend.api.v1.router import router as v1_router
from crm_backend.core.config import get_settings
from crm_backend.core.logging import setup_logging
from crm_backend.core.middleware import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    setup_logging(get_settings().log_level)
    logger.info("Starting CRM calendar API...")
    yield
    logger.info("Shutting down CRM calendar API...")


app = FastAPI(
    title="CRM Calendar API",
    description="Team calendar backend for the sales CRM - Google Calendar connections and the merged team timeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(v1_router, prefix="/api/v1")


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "CRM Calendar API",
        "version": "0.1.0",
        "docs": "/docs",
    }
