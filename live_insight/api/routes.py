"""
REST API routes for the live insight engine.

Provides endpoints for capture control, the facilitator dashboard and
snapshot management.
"""

from datetime import datetime

import httpx
import structlog
from fastapi import APIRouter, HTTPException, status

from live_insight import __version__
from live_insight.api.deps import (
    ExistingSessionDep,
    RegistryDep,
    SessionDep,
    SettingsDep,
    WorkshopApiDep,
)
from live_insight.core.snapshot import decode_snapshot, default_snapshot_name, encode_snapshot
from live_insight.core.synthesis import domain_lens
from live_insight.errors import ConsentRequired, DeviceError, PermissionRequired, SnapshotLoadInvalid
from live_insight.models.domain import CaptureState, Domain
from live_insight.models.schemas import (
    CaptureStartRequest,
    CaptureStatusResponse,
    DashboardResponse,
    DomainLensResponse,
    HealthResponse,
    LatencyMetrics,
    PhaseUpdateRequest,
    SnapshotListResponse,
    SnapshotLoadResponse,
    SnapshotSaveRequest,
    SnapshotSummary,
    UtteranceSelectRequest,
)
from live_insight.utils.latency import get_tracker

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Live"])


def _upstream_error(e: httpx.HTTPError) -> HTTPException:
    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 404:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found upstream")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Workshop server error: {e}")


# =============================================================================
# Health & Status
# =============================================================================


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its providers.",
)
async def health_check(registry: RegistryDep, settings: SettingsDep) -> HealthResponse:
    services = {
        "deepgram": bool(settings.deepgram_api_key.get_secret_value()),
        "openai": bool(settings.openai_api_key.get_secret_value()),
        "workshop_api": bool(settings.workshop_api_url),
    }

    # Either provider alone keeps transcription alive
    if all(services.values()):
        status_val = "healthy"
    elif services["workshop_api"] and (services["deepgram"] or services["openai"]):
        status_val = "degraded"
    else:
        status_val = "unhealthy"

    return HealthResponse(
        status=status_val,
        version=__version__,
        timestamp=datetime.utcnow(),
        services=services,
        active_sessions=registry.active_count,
    )


@router.get(
    "/latency",
    response_model=list[LatencyMetrics],
    summary="Latency percentiles",
    description="Per-operation latency percentiles for transcription, forwarding and embedding.",
)
async def get_latency() -> list[LatencyMetrics]:
    return [LatencyMetrics(**m) for m in get_tracker().get_all_metrics()]


# =============================================================================
# Capture
# =============================================================================


@router.post(
    "/sessions/{session_id}/capture/start",
    response_model=CaptureStatusResponse,
    summary="Start live capture",
)
async def start_capture(
    session_id: str,
    request: CaptureStartRequest,
    session: SessionDep,
    registry: RegistryDep,
) -> CaptureStatusResponse:
    """
    Start capturing audio for a workshop.

    A pipeline left in the error state is replaced first, so this is also
    the manual restart after a device failure.
    """
    if session.pipeline.state is CaptureState.ERROR:
        registry.reset_pipeline(session_id)

    pipeline = session.pipeline
    pipeline.dialogue_phase = request.dialogue_phase
    session.model.dialogue_phase = request.dialogue_phase

    try:
        await pipeline.start(request.consent)
    except (ConsentRequired, PermissionRequired) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except DeviceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return pipeline.status()


@router.post(
    "/sessions/{session_id}/capture/stop",
    response_model=CaptureStatusResponse,
    summary="Stop live capture",
)
async def stop_capture(session_id: str, session: ExistingSessionDep) -> CaptureStatusResponse:
    session.pipeline.stop()
    return session.pipeline.status()


@router.get(
    "/sessions/{session_id}/capture",
    response_model=CaptureStatusResponse,
    summary="Capture status",
)
async def capture_status(session_id: str, session: SessionDep) -> CaptureStatusResponse:
    return session.pipeline.status()


@router.put(
    "/sessions/{session_id}/phase",
    response_model=CaptureStatusResponse,
    summary="Switch dialogue phase",
    description="Applies to chunks forwarded from now on; earlier chunks keep their phase.",
)
async def update_phase(
    session_id: str, request: PhaseUpdateRequest, session: SessionDep
) -> CaptureStatusResponse:
    session.pipeline.dialogue_phase = request.dialogue_phase
    session.model.dialogue_phase = request.dialogue_phase
    logger.info("dialogue_phase_changed", session_id=session_id, phase=request.dialogue_phase.value)
    return session.pipeline.status()


# =============================================================================
# Dashboard
# =============================================================================


@router.get(
    "/sessions/{session_id}/dashboard",
    response_model=DashboardResponse,
    summary="Live dashboard",
    description="Themes, per-domain synthesis, dependency lines, pressure points and reveal state.",
)
async def get_dashboard(session_id: str, session: SessionDep) -> DashboardResponse:
    return session.model.dashboard()


@router.put(
    "/sessions/{session_id}/selection",
    response_model=UtteranceSelectRequest,
    summary="Select an utterance",
)
async def select_utterance(
    session_id: str, request: UtteranceSelectRequest, session: SessionDep
) -> UtteranceSelectRequest:
    return UtteranceSelectRequest(utterance_id=session.model.select(request.utterance_id))


@router.get(
    "/sessions/{session_id}/domains/{domain}/lens",
    response_model=DomainLensResponse,
    summary="Domain lens",
)
async def get_domain_lens(session_id: str, domain: Domain, session: SessionDep) -> DomainLensResponse:
    dashboard = session.model.dashboard()
    lens = domain_lens(domain, dashboard.synthesis, session.model.dependencies.edges)
    return DomainLensResponse(domain=domain, **lens)


# =============================================================================
# Snapshots
# =============================================================================


@router.get(
    "/sessions/{session_id}/snapshots",
    response_model=SnapshotListResponse,
    summary="List snapshots",
)
async def list_snapshots(session_id: str, workshop_api: WorkshopApiDep) -> SnapshotListResponse:
    try:
        snapshots = await workshop_api.list_snapshots(session_id)
    except httpx.HTTPError as e:
        logger.error("snapshot_list_failed", session_id=session_id, error=str(e))
        raise _upstream_error(e)
    return SnapshotListResponse(snapshots=snapshots)


@router.post(
    "/sessions/{session_id}/snapshots",
    response_model=SnapshotSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Save a snapshot",
)
async def save_snapshot(
    session_id: str,
    request: SnapshotSaveRequest,
    session: SessionDep,
    workshop_api: WorkshopApiDep,
) -> SnapshotSummary:
    phase = session.model.dialogue_phase
    name = (request.name or "").strip() or default_snapshot_name(phase)
    payload = encode_snapshot(session.model.to_snapshot())

    try:
        return await workshop_api.save_snapshot(session_id, name, phase, payload)
    except httpx.HTTPError as e:
        logger.error("snapshot_save_failed", session_id=session_id, error=str(e))
        raise _upstream_error(e)


@router.post(
    "/sessions/{session_id}/snapshots/{snapshot_id}/load",
    response_model=SnapshotLoadResponse,
    summary="Load a snapshot",
    description="Replaces the live model; an invalid payload leaves it untouched.",
)
async def load_snapshot(
    session_id: str,
    snapshot_id: str,
    session: SessionDep,
    workshop_api: WorkshopApiDep,
) -> SnapshotLoadResponse:
    try:
        payload = await workshop_api.get_snapshot_payload(session_id, snapshot_id)
        snapshot = decode_snapshot(payload)
    except SnapshotLoadInvalid as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except httpx.HTTPError as e:
        logger.error("snapshot_fetch_failed", session_id=session_id, error=str(e))
        raise _upstream_error(e)

    session.model.load_snapshot(snapshot)
    session.pipeline.dialogue_phase = snapshot.dialogue_phase

    return SnapshotLoadResponse(
        success=True,
        snapshot_id=snapshot_id,
        utterance_count=len(session.model.utterances),
        theme_count=len(session.model.themes.themes),
        edge_count=len(session.model.dependencies.edges),
    )
