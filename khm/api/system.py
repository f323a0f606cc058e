"""
Discovery and health endpoints.
"""
import logging
from typing import List

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/flows", response_model=List[str])
async def list_flows(request: Request):
    """Flows this server accepts."""
    logger.info("API request for available flows")
    return request.app.state.settings.FLOWS


@router.get("/api/version")
async def get_version(request: Request):
    """Server version."""
    return {"version": request.app.state.settings.APP_VERSION}


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
