"""Health check endpoint: database connectivity and which sign-in methods are configured."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse
from app.services.image_upload import is_imagekit_configured
from app.services.oauth_providers import configured_providers

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        oauth_providers=configured_providers(settings),
        image_upload=is_imagekit_configured(settings),
    )
