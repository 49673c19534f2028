"""
Realtime feed event models.

The workshop server pushes three named events over SSE. Each carries an
envelope `{id, type, createdAt, payload}`; the payload shape depends on
the type. Events are validated into a tagged union on receipt and
anything that fails the shape check is rejected.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class FeedModel(BaseModel):
    """Base for camelCase wire payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def to_epoch_ms(value: Any) -> int | None:
    """Convert an ISO string or epoch-ms number into epoch milliseconds."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    try:
        return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


class FeedDataPoint(FeedModel):
    id: str = Field(..., min_length=1)
    raw_text: str = ""
    source: str = ""
    created_at: int | None = None
    dialogue_phase: str | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, v: Any) -> int | None:
        return to_epoch_ms(v)


class FeedTranscriptChunk(FeedModel):
    start_time_ms: int = 0
    end_time_ms: int = 0
    confidence: float | None = None
    source: str = ""


class FeedClassification(FeedModel):
    primary_type: str
    confidence: float | None = None
    keywords: list[str] = Field(default_factory=list)
    suggested_area: str | None = None
    updated_at: str | None = None


class FeedAnnotation(FeedModel):
    dialogue_phase: str | None = None
    intent: str | None = None
    updated_at: str | None = None


class DataPointCreatedPayload(FeedModel):
    data_point: FeedDataPoint
    transcript_chunk: FeedTranscriptChunk | None = None


class ClassificationUpdatedPayload(FeedModel):
    data_point_id: str = Field(..., min_length=1)
    classification: FeedClassification


class AnnotationUpdatedPayload(FeedModel):
    data_point_id: str = Field(..., min_length=1)
    annotation: FeedAnnotation


class FeedEnvelope(FeedModel):
    """Common `{id, type, createdAt, payload}` envelope."""

    id: str = ""
    created_at: int | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, v: Any) -> int | None:
        return to_epoch_ms(v)


class DataPointCreated(FeedEnvelope):
    type: Literal["datapoint.created"]
    payload: DataPointCreatedPayload


class ClassificationUpdated(FeedEnvelope):
    type: Literal["classification.updated"]
    payload: ClassificationUpdatedPayload


class AnnotationUpdated(FeedEnvelope):
    type: Literal["annotation.updated"]
    payload: AnnotationUpdatedPayload


FeedEvent = Annotated[
    Union[DataPointCreated, ClassificationUpdated, AnnotationUpdated],
    Field(discriminator="type"),
]

FEED_EVENT_TYPES = ("datapoint.created", "classification.updated", "annotation.updated")

_feed_event_adapter: TypeAdapter[FeedEvent] = TypeAdapter(FeedEvent)


def parse_feed_event(raw: str | bytes | dict[str, Any]) -> FeedEvent:
    """
    Validate a raw feed message into a FeedEvent.

    Raises:
        pydantic.ValidationError: If the message does not match any event shape
    """
    if isinstance(raw, (str, bytes)):
        return _feed_event_adapter.validate_json(raw)
    return _feed_event_adapter.validate_python(raw)
