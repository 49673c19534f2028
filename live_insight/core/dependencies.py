"""
Cross-domain dependency inference.

Detects when an utterance in one domain references another domain and
accumulates directed edge statistics. Edges only ever grow; recency
decay is applied when they are read, never stored.
"""

import re
import time
from typing import Callable

import structlog

from live_insight.models.domain import (
    ALL_DOMAINS,
    DependencyEdge,
    DependencyLink,
    Domain,
    Utterance,
    Valence,
    ValenceTally,
)
from live_insight.services.interpretation import score_domains

logger = structlog.get_logger(__name__)

DEPENDENCY_LANGUAGE = re.compile(
    r"\b(depends? on|dependent on|blocked by|bottleneck|requires?|needs?|must|approval"
    r"|sign[- ]off|compliance|governance|legal)\b",
    re.IGNORECASE,
)


def has_dependency_language(text: str) -> bool:
    t = (text or "").strip()
    return bool(t) and DEPENDENCY_LANGUAGE.search(t) is not None


def infer_mentioned_domains(text: str) -> list[Domain]:
    """Keyword fallback detector: domains mentioned in text, most hits first."""
    return [d for d, _ in score_domains(text)]


def is_pressure(edge: DependencyEdge) -> bool:
    """Constraint-dominated edge with enough evidence."""
    return (
        edge.count >= 3
        and edge.constraint_count >= 2
        and edge.constraint_count > edge.aspiration_count
    )


def _clamp01(n: float) -> float:
    if n != n:  # NaN
        return 0.0
    return max(0.0, min(1.0, n))


def now_ms() -> int:
    return int(time.time() * 1000)


class DependencyInferenceEngine:
    """
    Accumulates directed domain-to-domain edges from utterances.

    Each utterance is counted once, tracked by a processed-id set, so
    re-feeding or restoring a snapshot never double counts.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self.clock = clock
        self.edges: dict[str, DependencyEdge] = {}
        self.processed_ids: set[str] = set()
        self.domain_tallies: dict[Domain, ValenceTally] = {d: ValenceTally() for d in ALL_DOMAINS}

    @property
    def processed_count(self) -> int:
        return len(self.processed_ids)

    def process(self, utterance: Utterance) -> DependencyEdge | None:
        """
        Record the dependency signal of one utterance.

        Returns the touched edge, or None if the utterance was already
        processed or carries no cross-domain reference.
        """
        if not utterance.id or utterance.id in self.processed_ids:
            return None
        self.processed_ids.add(utterance.id)
        self._tally(utterance)

        domain = utterance.domain
        mentioned = [d for d in utterance.domains if d != domain]
        if not mentioned:
            mentioned = [d for d in infer_mentioned_domains(utterance.raw_text) if d != domain]

        if not (has_dependency_language(utterance.raw_text) or mentioned):
            return None
        if not mentioned:
            return None

        to_domain = mentioned[0]
        edge_id = DependencyEdge.edge_id(domain, to_domain)
        ts = self.clock()

        edge = self.edges.get(edge_id)
        if edge is None:
            edge = DependencyEdge(
                id=edge_id,
                from_domain=domain,
                to_domain=to_domain,
                first_seen_at_ms=ts,
                last_seen_at_ms=ts,
            )
            self.edges[edge_id] = edge
            logger.info("dependency_edge_created", edge_id=edge_id)

        edge.count += 1
        if utterance.valence is Valence.ASPIRATION:
            edge.aspiration_count += 1
        elif utterance.valence is Valence.CONSTRAINT:
            edge.constraint_count += 1
        edge.last_seen_at_ms = ts
        return edge

    def _tally(self, utterance: Utterance) -> None:
        tally = self.domain_tallies[utterance.domain]
        if utterance.valence is Valence.CONSTRAINT:
            tally.constraint_count += 1
        elif utterance.valence is Valence.ASPIRATION:
            tally.aspiration_count += 1

    def links(
        self,
        now: int | None = None,
        min_count: int = 3,
        decay_ms: int = 6 * 60 * 1000,
    ) -> list[DependencyLink]:
        """
        Decayed view of edges for drawing.

        Strength grows with count above `min_count` and fades linearly to
        zero over `decay_ms` since the edge was last seen.
        """
        now = self.clock() if now is None else now
        out: list[DependencyLink] = []
        for edge in self.edges.values():
            if edge.count < min_count:
                continue
            age = max(0, now - edge.last_seen_at_ms)
            base = _clamp01((edge.count - min_count) / 6)
            strength = _clamp01(base * (1 - _clamp01(age / decay_ms)))
            if strength <= 0.02:
                continue
            out.append(
                DependencyLink(
                    id=edge.id,
                    from_domain=edge.from_domain,
                    to_domain=edge.to_domain,
                    strength=strength,
                    is_pressure=is_pressure(edge) and strength > 0.08,
                )
            )
        return out

    def restore(
        self,
        edges: dict[str, DependencyEdge],
        processed_ids: set[str],
        utterances: list[Utterance],
    ) -> None:
        """Replace state from a snapshot; tallies are rebuilt from processed utterances."""
        self.edges = dict(edges)
        self.processed_ids = set(processed_ids)
        self.domain_tallies = {d: ValenceTally() for d in ALL_DOMAINS}
        for u in utterances:
            if u.id in self.processed_ids:
                self._tally(u)
