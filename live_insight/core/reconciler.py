"""
Realtime reconciler.

Merges the workshop server's append-only event feed into the live model.
Delivery is at-least-once and unordered, so every merge is keyed by
data point id: repeated creations are ignored and updates for ids not
yet known are dropped.
"""

from collections import OrderedDict
from typing import Any

import structlog
from pydantic import ValidationError

from live_insight.core.dependencies import now_ms
from live_insight.core.model import LiveModel
from live_insight.models.domain import ChunkRef, Classification, DataPoint, DialoguePhase
from live_insight.models.events import (
    AnnotationUpdated,
    ClassificationUpdated,
    DataPointCreated,
    FeedEvent,
    parse_feed_event,
)
from live_insight.utils.latency import FEED_EVENTS

logger = structlog.get_logger(__name__)


def pending_key(start_ms: int, end_ms: int, source: str, text: str) -> str:
    return f"{start_ms}:{end_ms}:{source}:{text.strip()}"


class RealtimeReconciler:
    """
    Applies feed events to a LiveModel.

    Also remembers the dialogue phase of chunks this pipeline forwarded,
    so a created event that comes back without a phase can still be
    stamped with the phase that was active when the audio was captured.
    """

    def __init__(self, model: LiveModel, pending_cap: int = 500) -> None:
        self.model = model
        self.pending_cap = pending_cap
        self.pending_phases: OrderedDict[str, DialoguePhase] = OrderedDict()
        self.applied_count = 0
        self.ignored_count = 0
        self.rejected_count = 0

    def remember_phase(
        self, start_ms: int, end_ms: int, source: str, text: str, phase: DialoguePhase
    ) -> None:
        key = pending_key(start_ms, end_ms, source, text)
        self.pending_phases[key] = phase
        self.pending_phases.move_to_end(key)
        while len(self.pending_phases) > self.pending_cap:
            self.pending_phases.popitem(last=False)

    def handle(self, event_name: str, data: str | bytes | dict[str, Any]) -> bool:
        """
        Validate and apply one named feed event.

        Returns True if the model changed. Malformed events are logged and
        rejected, never raised.
        """
        try:
            event = parse_feed_event(data)
        except ValidationError as e:
            self.rejected_count += 1
            FEED_EVENTS.labels(event=event_name, outcome="rejected").inc()
            logger.warning(
                "feed_event_rejected",
                session_id=self.model.session_id,
                event_name=event_name,
                errors=e.error_count(),
            )
            return False

        if event_name and event.type != event_name:
            self.rejected_count += 1
            FEED_EVENTS.labels(event=event_name, outcome="rejected").inc()
            logger.warning(
                "feed_event_name_mismatch",
                session_id=self.model.session_id,
                event_name=event_name,
                payload_type=event.type,
            )
            return False

        changed = self.apply(event)
        if changed:
            self.applied_count += 1
        else:
            self.ignored_count += 1
        FEED_EVENTS.labels(event=event.type, outcome="applied" if changed else "ignored").inc()
        return changed

    def apply(self, event: FeedEvent) -> bool:
        if isinstance(event, DataPointCreated):
            return self._on_created(event)
        if isinstance(event, ClassificationUpdated):
            p = event.payload
            return self.model.apply_classification(
                p.data_point_id,
                Classification(
                    primary_type=p.classification.primary_type,
                    confidence=p.classification.confidence,
                    keywords=p.classification.keywords,
                    suggested_area=p.classification.suggested_area,
                    updated_at=p.classification.updated_at,
                ),
            )
        if isinstance(event, AnnotationUpdated):
            p = event.payload
            return self.model.apply_annotation(
                p.data_point_id,
                DialoguePhase.parse(p.annotation.dialogue_phase),
                p.annotation.intent,
            )
        return False

    def _on_created(self, event: DataPointCreated) -> bool:
        dp = event.payload.data_point
        if dp.id in self.model.data_points:
            return False

        chunk = event.payload.transcript_chunk
        phase = DialoguePhase.parse(dp.dialogue_phase)
        if chunk is not None:
            key = pending_key(chunk.start_time_ms, chunk.end_time_ms, chunk.source, dp.raw_text)
            remembered = self.pending_phases.pop(key, None)
            phase = phase or remembered

        data_point = DataPoint(
            id=dp.id,
            created_at_ms=dp.created_at or event.created_at or now_ms(),
            raw_text=dp.raw_text,
            source=dp.source,
            dialogue_phase=phase,
            transcript_chunk=(
                ChunkRef(
                    start_time_ms=chunk.start_time_ms,
                    end_time_ms=chunk.end_time_ms,
                    confidence=chunk.confidence,
                    source=chunk.source,
                )
                if chunk is not None
                else None
            ),
        )
        self.model.add_data_point(data_point)
        return True
