"""Health check endpoints."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_engine
from config import settings
from lib.database import get_db
from services.network_engine import NetworkEngine

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str


class DetailedHealthResponse(BaseModel):
    status: str
    version: str
    config_version: int
    services: Dict[str, Any]


@router.get("/", response_model=HealthResponse)
def health_check():
    """Basic health check endpoint."""
    return HealthResponse(status="healthy", version=settings.APP_VERSION)


@router.get("/detailed", response_model=DetailedHealthResponse)
def detailed_health_check(db: Session = Depends(get_db), engine: NetworkEngine = Depends(get_engine)):
    """Detailed health check with service status."""
    services = {}
    overall_status = "healthy"

    try:
        db.execute(text("SELECT 1"))
        services["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = {"status": "error", "error": str(e)}
        overall_status = "unhealthy"

    services["narratives"] = {"status": "enabled" if engine.summarize else "disabled"}

    return DetailedHealthResponse(
        status=overall_status,
        version=settings.APP_VERSION,
        config_version=engine.config.version,
        services=services,
    )
