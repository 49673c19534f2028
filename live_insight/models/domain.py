"""
Core domain models for the live workshop pipeline.

These models represent the internal data structures used throughout
the application: transcript chunks coming out of capture, utterances
and their interpretation, themes, dependency edges and the derived
synthesis views.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Domain(str, Enum):
    """Fixed set of discussion domains."""

    PEOPLE = "People"
    OPERATIONS = "Operations"
    CUSTOMER = "Customer"
    TECHNOLOGY = "Technology"
    REGULATION = "Regulation"


ALL_DOMAINS: tuple[Domain, ...] = tuple(Domain)


class DialoguePhase(str, Enum):
    """Facilitation phase a chunk was captured in."""

    REIMAGINE = "REIMAGINE"
    CONSTRAINTS = "CONSTRAINTS"
    DEFINE_APPROACH = "DEFINE_APPROACH"

    @classmethod
    def parse(cls, value: Any) -> "DialoguePhase | None":
        """Lenient parse used for server-supplied values."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class TranscriptSource(str, Enum):
    """Provider that produced a transcript chunk."""

    DEEPGRAM = "deepgram"
    WHISPER = "whisper"


class CaptureState(str, Enum):
    """Capture supervisor lifecycle states."""

    IDLE = "idle"
    CAPTURING = "capturing"
    STOPPED = "stopped"
    ERROR = "error"


class TemporalIntent(str, Enum):
    """Time orientation of an utterance."""

    FUTURE = "FUTURE"
    CURRENT = "CURRENT"
    LIMIT = "LIMIT"
    METHOD = "METHOD"


class ConfidenceWeight(str, Enum):
    """Coarse interpretation confidence."""

    HIGH = "high"
    MID = "mid"
    LOW = "low"

    @property
    def weight(self) -> float:
        if self is ConfidenceWeight.HIGH:
            return 1.4
        if self is ConfidenceWeight.MID:
            return 1.0
        return 0.6


class Valence(str, Enum):
    """Dependency signal kind of an utterance."""

    ASPIRATION = "aspiration"
    CONSTRAINT = "constraint"
    NEUTRAL = "neutral"


class TranscriptChunk(BaseModel):
    """
    One transcribed audio window.

    Immutable once produced. Consecutive chunks never overlap: the
    start of chunk n is at or after the end of chunk n-1.
    """

    model_config = ConfigDict(frozen=True)

    start_time_ms: int = Field(..., ge=0, description="Window start relative to capture start")
    end_time_ms: int = Field(..., ge=0, description="Window end relative to capture start")
    text: str = Field(..., min_length=1, description="Transcribed text")
    confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Provider-reported confidence"
    )
    source: TranscriptSource = Field(..., description="Provider that produced the text")

    @model_validator(mode="after")
    def _check_window(self) -> "TranscriptChunk":
        if self.end_time_ms < self.start_time_ms:
            raise ValueError("end_time_ms must not precede start_time_ms")
        return self


class Interpretation(BaseModel):
    """Output of the classification/interpretation collaborator."""

    domain: Domain
    domains: list[Domain] = Field(default_factory=list)
    intent_types: list[str] = Field(
        default_factory=list, description="Cognitive type tags, e.g. VISION, BLOCKER"
    )
    temporal_intent: TemporalIntent = TemporalIntent.CURRENT
    confidence_weight: ConfidenceWeight = ConfidenceWeight.LOW
    confidence: float = Field(default=0.35, ge=0.0, le=1.0)

    def has_tag(self, tag: str) -> bool:
        return any(t.upper() == tag for t in self.intent_types)


class Classification(BaseModel):
    """Server-side classification of a data point."""

    primary_type: str
    confidence: float | None = None
    keywords: list[str] = Field(default_factory=list)
    suggested_area: str | None = None
    updated_at: str | None = None


class ChunkRef(BaseModel):
    """Reference to the transcript chunk a data point came from."""

    start_time_ms: int = 0
    end_time_ms: int = 0
    confidence: float | None = None
    source: str = ""


class DataPoint(BaseModel):
    """A persisted data point announced by the realtime feed."""

    id: str
    created_at_ms: int
    raw_text: str
    source: str = ""
    dialogue_phase: DialoguePhase | None = None
    transcript_chunk: ChunkRef | None = None
    classification: Classification | None = None
    intent: str | None = None


class Utterance(BaseModel):
    """
    One classified unit of spoken text.

    Either a whole data point (same id) or one sentence of it, with a
    virtual id `{parent}::u{n}` and an interpolated timestamp.
    """

    id: str
    parent_id: str
    created_at_ms: int
    raw_text: str
    source_chunk_ref: ChunkRef | None = None
    domain: Domain
    domains: list[Domain] = Field(default_factory=list)
    intent_type: str = Field(..., description="Primary type used for theme grouping")
    valence: Valence = Valence.NEUTRAL
    confidence_weight: float = 0.6
    dialogue_phase: DialoguePhase | None = None
    intent: str | None = Field(default=None, description="Intent annotation from the server")
    theme_id: str | None = None


class Theme(BaseModel):
    """An emergent cluster of utterances sharing domain, intent type and meaning."""

    id: str
    domain: Domain
    intent_type: str
    label: str
    strength: int = Field(default=1, ge=1)
    centroid: list[float] = Field(default_factory=list)
    supporting_utterance_ids: list[str] = Field(default_factory=list)
    last_seen_at_ms: int = 0

    def fold(self, vector: list[float]) -> None:
        """Fold a new embedding into the count-weighted running mean."""
        n = self.strength
        if not self.centroid:
            self.centroid = list(vector)
        else:
            self.centroid = [
                (c * n + (vector[i] if i < len(vector) else 0.0)) / (n + 1)
                for i, c in enumerate(self.centroid)
            ]
        self.strength = n + 1

    def add_support(self, utterance_id: str, created_at_ms: int, cap: int) -> None:
        """Append a supporting utterance, dropping the oldest beyond the cap."""
        ids = self.supporting_utterance_ids + [utterance_id]
        self.supporting_utterance_ids = ids[-cap:]
        self.last_seen_at_ms = max(self.last_seen_at_ms, created_at_ms)


class DependencyEdge(BaseModel):
    """Directed, accumulating statistic that one domain references another."""

    id: str
    from_domain: Domain
    to_domain: Domain
    count: int = 0
    aspiration_count: int = 0
    constraint_count: int = 0
    first_seen_at_ms: int = 0
    last_seen_at_ms: int = 0

    @property
    def neutral_count(self) -> int:
        return self.count - self.aspiration_count - self.constraint_count

    @staticmethod
    def edge_id(from_domain: Domain, to_domain: Domain) -> str:
        return f"dep:{from_domain.value}->{to_domain.value}"


class SynthesisItem(BaseModel):
    """A ranked theme excerpt inside one domain/category bucket."""

    theme_id: str
    label: str
    intent_type: str
    strength: int
    last_seen_at_ms: int
    weight: float
    examples: list[str] = Field(default_factory=list)


class DomainSynthesis(BaseModel):
    """Per-domain synthesis buckets."""

    aspirations: list[SynthesisItem] = Field(default_factory=list)
    constraints: list[SynthesisItem] = Field(default_factory=list)
    enablers: list[SynthesisItem] = Field(default_factory=list)
    opportunities: list[SynthesisItem] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.aspirations)
            + len(self.constraints)
            + len(self.enablers)
            + len(self.opportunities)
        )


class PressurePoint(BaseModel):
    """A dependency edge, or a domain, where constraints dominate aspirations."""

    id: str
    from_domain: Domain
    to_domain: Domain
    score: int
    constraint_count: int
    aspiration_count: int
    count: int


class DependencyLink(BaseModel):
    """Read-time decayed view of a dependency edge for drawing."""

    id: str
    from_domain: Domain
    to_domain: Domain
    strength: float
    is_pressure: bool = False


class ValenceTally(BaseModel):
    """Running constraint/aspiration counts for one domain."""

    constraint_count: int = 0
    aspiration_count: int = 0
