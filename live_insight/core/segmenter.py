"""
Utterance segmentation.

A transcribed chunk often holds several sentences. Each sentence becomes
its own utterance with a stable virtual id derived from the parent data
point and a timestamp interpolated across the parent chunk window.
"""

import math
import re
from dataclasses import dataclass

from live_insight.models.domain import DataPoint

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9“\"'])")

MIN_SPAN_MS = 500
MIN_STEP_MS = 250


@dataclass(frozen=True)
class UtterancePart:
    """One sentence-level slice of a data point."""

    id: str
    parent_id: str
    text: str
    created_at_ms: int


def split_into_utterances(text: str) -> list[str]:
    """Split text into sentences, normalising whitespace first."""
    normalized = " ".join((text or "").split())
    if not normalized:
        return []
    parts = [p.strip() for p in SENTENCE_BOUNDARY.split(normalized)]
    parts = [p for p in parts if p]
    return parts or [normalized]


def virtual_id(parent_id: str, ordinal: int) -> str:
    return f"{parent_id}::u{ordinal}"


def segment_data_point(data_point: DataPoint) -> list[UtterancePart]:
    """
    Split a data point into utterance parts.

    A single sentence keeps the parent id so that ids from the feed stay
    addressable. Several sentences get `{parent}::u{n}` ids and
    timestamps spread over `max(500, end - start)` milliseconds.
    """
    parts = split_into_utterances(data_point.raw_text)
    if len(parts) <= 1:
        text = parts[0] if parts else data_point.raw_text.strip()
        return [
            UtterancePart(
                id=data_point.id,
                parent_id=data_point.id,
                text=text,
                created_at_ms=data_point.created_at_ms,
            )
        ]

    chunk = data_point.transcript_chunk
    start_ms = chunk.start_time_ms if chunk else 0
    end_ms = chunk.end_time_ms if chunk else start_ms
    span = max(MIN_SPAN_MS, end_ms - start_ms)
    step = span / len(parts)

    return [
        UtterancePart(
            id=virtual_id(data_point.id, i),
            parent_id=data_point.id,
            text=part,
            created_at_ms=data_point.created_at_ms + math.floor(i * max(MIN_STEP_MS, step)),
        )
        for i, part in enumerate(parts)
    ]
