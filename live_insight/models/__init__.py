"""
Data models for the live insight engine.
"""

from live_insight.models.domain import (
    CaptureState,
    DataPoint,
    DependencyEdge,
    DialoguePhase,
    Domain,
    Interpretation,
    Theme,
    TranscriptChunk,
    Utterance,
)
from live_insight.models.events import FeedEvent, parse_feed_event
from live_insight.models.schemas import (
    CaptureStartRequest,
    CaptureStatusResponse,
    DashboardResponse,
    HealthResponse,
    PhaseUpdateRequest,
    ReadinessReport,
    SnapshotListResponse,
    SnapshotLoadResponse,
    SnapshotSaveRequest,
    SnapshotSummary,
    WSAudioMessage,
    WSControlMessage,
    WSStatusMessage,
)

__all__ = [
    # Domain models
    "CaptureState",
    "DataPoint",
    "DependencyEdge",
    "DialoguePhase",
    "Domain",
    "Interpretation",
    "Theme",
    "TranscriptChunk",
    "Utterance",
    # Feed events
    "FeedEvent",
    "parse_feed_event",
    # API schemas
    "CaptureStartRequest",
    "CaptureStatusResponse",
    "DashboardResponse",
    "HealthResponse",
    "PhaseUpdateRequest",
    "ReadinessReport",
    "SnapshotListResponse",
    "SnapshotLoadResponse",
    "SnapshotSaveRequest",
    "SnapshotSummary",
    "WSAudioMessage",
    "WSControlMessage",
    "WSStatusMessage",
]
