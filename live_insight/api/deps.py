"""
Dependency injection for API endpoints.

Provides reusable dependencies for FastAPI routes: the settings, the
shared workshop server client and the per-session registry.
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status

from live_insight.config import Settings, get_settings
from live_insight.core.sessions import LiveSession, SessionRegistry
from live_insight.errors import SessionNotFound
from live_insight.services.workshop_api import WorkshopApiClient

logger = structlog.get_logger(__name__)


# Type aliases for cleaner annotations
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_registry(request: Request) -> SessionRegistry:
    """
    Get the live session registry from app state.

    Raises:
        HTTPException: If the registry was not initialized
    """
    if not hasattr(request.app.state, "registry"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session registry not initialized",
        )
    return request.app.state.registry


def get_workshop_api(request: Request) -> WorkshopApiClient:
    """
    Get the workshop server client from app state.

    Raises:
        HTTPException: If the client was not initialized
    """
    if not hasattr(request.app.state, "workshop_api"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workshop server client not initialized",
        )
    return request.app.state.workshop_api


RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]
WorkshopApiDep = Annotated[WorkshopApiClient, Depends(get_workshop_api)]


def get_session(session_id: str, registry: RegistryDep) -> LiveSession:
    """Get or lazily create the live session for a workshop."""
    return registry.get_or_create(session_id)


SessionDep = Annotated[LiveSession, Depends(get_session)]


def get_existing_session(session_id: str, registry: RegistryDep) -> LiveSession:
    """
    Get a live session that must already exist.

    Raises:
        HTTPException: 404 if no capture or dashboard was ever opened for it
    """
    try:
        return registry.get(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


ExistingSessionDep = Annotated[LiveSession, Depends(get_existing_session)]
