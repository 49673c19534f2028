"""
Pydantic schemas for API request/response validation.

These models define the contract between the API and its clients,
ensuring type safety and automatic documentation.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from live_insight.models.domain import (
    CaptureState,
    DependencyEdge,
    DependencyLink,
    DialoguePhase,
    Domain,
    DomainSynthesis,
    PressurePoint,
    SynthesisItem,
    Theme,
)


# =============================================================================
# Health & Metrics
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ..., description="Service health status"
    )
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(
        default_factory=datetime.utcnow, description="Check timestamp"
    )
    services: dict[str, bool] = Field(
        default_factory=dict, description="Individual service health status"
    )
    active_sessions: int = Field(default=0, description="Sessions with a live pipeline")


class LatencyMetrics(BaseModel):
    """Latency metrics for a single operation."""

    operation: str = Field(..., description="Operation name")
    p50_ms: float = Field(..., description="50th percentile latency in ms")
    p95_ms: float = Field(..., description="95th percentile latency in ms")
    p99_ms: float = Field(..., description="99th percentile latency in ms")
    count: int = Field(..., description="Total operation count")
    failures: int = Field(default=0, description="Calls that raised")


# =============================================================================
# Capture
# =============================================================================


class CaptureStartRequest(BaseModel):
    """Request to start live capture for a session."""

    consent: bool = Field(..., description="Participant consent flag")
    dialogue_phase: DialoguePhase = Field(
        default=DialoguePhase.REIMAGINE, description="Phase stamped on forwarded chunks"
    )

    model_config = {"json_schema_extra": {"example": {"consent": True, "dialogue_phase": "REIMAGINE"}}}


class PhaseUpdateRequest(BaseModel):
    """Switch the facilitation phase of a live session."""

    dialogue_phase: DialoguePhase = Field(..., description="New dialogue phase")


class CaptureStatusResponse(BaseModel):
    """Capture supervisor status."""

    session_id: str = Field(..., description="Workshop session ID")
    state: CaptureState = Field(..., description="Capture lifecycle state")
    generation: int = Field(..., description="Current recorder generation")
    dialogue_phase: DialoguePhase = Field(..., description="Current dialogue phase")
    forwarded_count: int = Field(default=0, description="Chunks forwarded to ingestion")
    dropped_count: int = Field(default=0, description="Chunks dropped after transcription failed")
    restart_count: int = Field(default=0, description="Watchdog-forced recorder restarts")
    secondary_disabled: bool = Field(
        default=False, description="Whether the fallback provider was circuit-broken"
    )
    debug_trace: list[str] = Field(default_factory=list, description="Most recent trace lines")


# =============================================================================
# Dashboard
# =============================================================================


class ReadinessChecks(BaseModel):
    """Individual reveal checks."""

    intent_extraction_ready: bool
    dependency_inference_ready: bool
    domain_synthesis_ready: bool
    vision_narrative_ready: bool
    dependency_lines_visible: bool = Field(default=False, description="Informational only")
    pressure_points_detected: bool = Field(default=False, description="Informational only")


class ReadinessReport(BaseModel):
    """Reveal gate outcome."""

    reveal_ready: bool
    checks: ReadinessChecks


class DashboardResponse(BaseModel):
    """Derived live model for the facilitator dashboard."""

    session_id: str = Field(..., description="Workshop session ID")
    dialogue_phase: DialoguePhase = Field(..., description="Current dialogue phase")
    data_point_count: int = Field(default=0, description="Data points received from the feed")
    utterance_count: int = Field(default=0, description="Utterances after segmentation")
    processed_count: int = Field(default=0, description="Utterances processed for dependencies")
    selected_utterance_id: str | None = Field(default=None, description="Utterance in focus")
    using_lexical_themes: bool = Field(
        default=True, description="Themes come from keyword signatures, not embeddings"
    )
    themes: list[Theme] = Field(default_factory=list, description="Active themes, strongest first")
    synthesis: dict[Domain, DomainSynthesis] = Field(
        default_factory=dict, description="Per-domain synthesis buckets"
    )
    dependency_edges: list[DependencyEdge] = Field(default_factory=list)
    dependency_links: list[DependencyLink] = Field(
        default_factory=list, description="Recency-decayed edges for drawing"
    )
    pressure_points: list[PressurePoint] = Field(default_factory=list)
    vision_narrative: str | None = Field(default=None, description="Draft future-state narrative")
    domain_narratives: dict[Domain, str] = Field(default_factory=dict)
    readiness: ReadinessReport


class DomainLensResponse(BaseModel):
    """Focused view of one domain."""

    domain: Domain
    outcomes: list[SynthesisItem] = Field(default_factory=list)
    dependencies: list[DependencyEdge] = Field(default_factory=list, description="Outbound edges")
    blockers: list[DependencyEdge] = Field(default_factory=list)
    enablers: list[DependencyEdge] = Field(default_factory=list)
    inbound: list[DependencyEdge] = Field(default_factory=list)


class UtteranceSelectRequest(BaseModel):
    """Select an utterance (or a data point, mapped to its first utterance)."""

    utterance_id: str | None = Field(default=None, description="Utterance or data point ID")


# =============================================================================
# Snapshots
# =============================================================================


class SnapshotSaveRequest(BaseModel):
    """Request to persist the current live model."""

    name: str | None = Field(
        default=None, max_length=200, description="Snapshot name (generated when omitted)"
    )


class SnapshotSummary(BaseModel):
    """Stored snapshot without its payload."""

    id: str = Field(..., description="Snapshot ID")
    name: str = Field(..., description="Snapshot name")
    dialogue_phase: str | None = Field(default=None, description="Phase at save time")
    created_at: str | None = Field(default=None, description="Creation timestamp")


class SnapshotListResponse(BaseModel):
    """Snapshots stored for a workshop."""

    snapshots: list[SnapshotSummary] = Field(default_factory=list)


class SnapshotLoadResponse(BaseModel):
    """Result of loading a snapshot into the live model."""

    success: bool = Field(..., description="Whether the snapshot was applied")
    snapshot_id: str = Field(..., description="Applied snapshot ID")
    utterance_count: int = Field(default=0, description="Utterances restored")
    theme_count: int = Field(default=0, description="Themes restored")
    edge_count: int = Field(default=0, description="Dependency edges restored")


# =============================================================================
# WebSocket Messages
# =============================================================================


class WSAudioMessage(BaseModel):
    """WebSocket message containing an audio frame."""

    type: Literal["audio"] = Field(default="audio", description="Message type")
    data: str = Field(..., description="Base64 encoded audio data")
    mime_type: str = Field(default="audio/webm", description="Container/codec of the frame")


class WSControlMessage(BaseModel):
    """WebSocket control message from the capturing client."""

    type: Literal["ping", "stop", "device_error", "mic_check"] = Field(
        ..., description="Message type"
    )
    detail: str | None = Field(default=None, description="Optional detail text")
    ok: bool | None = Field(default=None, description="Microphone check outcome")


class WSStatusMessage(BaseModel):
    """Status pushed back to the capturing client."""

    type: Literal["status", "error", "pong"] = Field(..., description="Message type")
    state: CaptureState | None = Field(default=None, description="Capture state")
    forwarded_count: int = Field(default=0, description="Chunks forwarded so far")
    error: str | None = Field(default=None, description="Error message if applicable")
    data: dict[str, Any] = Field(default_factory=dict, description="Extra fields")
