"""
Live Insight Engine - FastAPI Application Entry Point

Real-time workshop capture: audio is cut into fixed windows, transcribed
with a fallback chain, forwarded to the workshop server and folded back
into a live model of themes, dependencies and synthesis.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from live_insight import __version__
from live_insight.api.routes import router as api_router
from live_insight.api.websocket import router as ws_router
from live_insight.config import get_settings
from live_insight.core.sessions import SessionRegistry
from live_insight.services.embeddings import EmbeddingService
from live_insight.services.transcription import DeepgramProvider, WhisperProvider
from live_insight.services.workshop_api import WorkshopApiClient
from live_insight.utils.logging import setup_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the shared clients and the session registry on startup; on
    shutdown every live pipeline is stopped before the clients close.
    """
    settings = get_settings()

    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=__version__,
        environment=settings.app_env,
    )

    try:
        workshop_api = WorkshopApiClient(settings)
        app.state.workshop_api = workshop_api

        embedding_service = EmbeddingService(settings)
        app.state.embedding_service = embedding_service

        primary = DeepgramProvider(settings)
        secondary = WhisperProvider(settings)
        app.state.registry = SessionRegistry(
            workshop_api,
            primary,
            secondary,
            embedding_service=embedding_service,
            settings=settings,
        )

        logger.info("services_initialized", embedding_provider=settings.embedding_provider)

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    logger.info("shutting_down_application")

    app.state.registry.stop_all()
    for service in (primary, secondary, embedding_service, workshop_api):
        try:
            await service.close()
        except Exception as e:
            logger.warning("service_close_failed", service=type(service).__name__, error=str(e))

    logger.info("application_shutdown_complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    setup_logging(settings.log_level, settings.app_env)

    app = FastAPI(
        title="Live Insight Engine",
        description="""
## Real-time Workshop Capture-to-Insight

Turns a live workshop conversation into a facilitator dashboard.

### Features

- **Audio Capture**: Fixed 10 s windows streamed over WebSocket, supervised by a watchdog
- **Transcription**: Deepgram with a circuit-broken Whisper fallback
- **Live Model**: Themes, cross-domain dependencies and per-domain synthesis
- **Snapshots**: Save and reload the whole live model

### Architecture

```
Audio → Segment clock → Queue → STT (Deepgram | Whisper) → Workshop server
                                                               ↓ (SSE)
Dashboard ← Synthesis ← Themes + Dependencies ← Utterances ← Reconciler
```
        """,
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    app.include_router(api_router, prefix="/api/v1")
    app.include_router(ws_router)

    return app


app = create_app()


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint redirect to docs."""
    return {
        "name": "Live Insight Engine",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
    }
