"""
Snapshot codec.

Serializes the whole in-memory model into an opaque JSON-compatible blob
and restores it. Decoding validates the full shape up front so a bad
payload never leaves the model half-loaded.
"""

from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from live_insight.errors import SnapshotLoadInvalid
from live_insight.models.domain import DataPoint, DependencyEdge, DialoguePhase, Theme, Utterance

logger = structlog.get_logger(__name__)

SNAPSHOT_VERSION = 1


class Snapshot(BaseModel):
    """Point-in-time copy of the live model."""

    v: int = SNAPSHOT_VERSION
    dialogue_phase: DialoguePhase = DialoguePhase.REIMAGINE
    data_points: dict[str, DataPoint] = Field(default_factory=dict)
    utterances: dict[str, Utterance] = Field(default_factory=dict)
    selected_utterance_id: str | None = None
    themes: dict[str, Theme] = Field(default_factory=dict)
    utterance_theme_assignments: dict[str, str] = Field(default_factory=dict)
    dependency_edges: dict[str, DependencyEdge] = Field(default_factory=dict)
    processed_utterance_ids: list[str] = Field(default_factory=list)
    processed_count: int = 0


def encode_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Snapshot to a JSON-compatible payload."""
    return snapshot.model_dump(mode="json")


def decode_snapshot(payload: Any) -> Snapshot:
    """
    Payload to Snapshot.

    Raises:
        SnapshotLoadInvalid: If the payload is not an object or fails validation
    """
    if not isinstance(payload, dict):
        raise SnapshotLoadInvalid("Snapshot payload is invalid")

    version = payload.get("v", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        raise SnapshotLoadInvalid(f"Unsupported snapshot version: {version!r}")

    try:
        snapshot = Snapshot.model_validate(payload)
    except ValidationError as e:
        logger.warning("snapshot_decode_failed", errors=e.error_count())
        raise SnapshotLoadInvalid(f"Snapshot payload is invalid: {e.error_count()} error(s)") from e

    unknown = [t for t in snapshot.utterance_theme_assignments.values() if t not in snapshot.themes]
    if unknown:
        raise SnapshotLoadInvalid(f"Snapshot assigns utterances to unknown themes: {unknown[:3]}")

    return snapshot


def default_snapshot_name(phase: DialoguePhase, when: datetime | None = None) -> str:
    """`Live-v1-{ddmmyy}-{phase}-workshop`."""
    d = when or datetime.now()
    slug = {
        DialoguePhase.REIMAGINE: "reimagine",
        DialoguePhase.CONSTRAINTS: "constraints",
        DialoguePhase.DEFINE_APPROACH: "define-approach",
    }[phase]
    return f"Live-v1-{d:%d%m%y}-{slug}-workshop"
