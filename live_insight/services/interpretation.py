"""
Keyword interpretation of workshop utterances.

The production taxonomy model is an external collaborator; this module
ships the lightweight keyword interpreter used when no model is wired in
and the helpers that map an Interpretation onto theme intent types and
dependency valence.
"""

import re
from typing import Callable

from live_insight.models.domain import (
    ConfidenceWeight,
    Domain,
    Interpretation,
    TemporalIntent,
    Valence,
)

Interpreter = Callable[[str], Interpretation]


def _patterns(*exprs: str) -> list[re.Pattern[str]]:
    return [re.compile(e, re.IGNORECASE) for e in exprs]


COGNITIVE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "VISION": _patterns(
        r"\bdream\b", r"\bimagine\b", r"\bvision\b", r"\bwould\s+love\b", r"\bwish\b", r"\bideal(ly)?\b"
    ),
    "OUTCOME": _patterns(r"\boutcome(s)?\b", r"\bresult(s)?\b", r"\bso\s+that\b", r"\bachieve\b", r"\bgoal(s)?\b"),
    "OPPORTUNITY": _patterns(
        r"\bopportunit(y|ies)\b", r"\bidea\b", r"\bwe\s+could\b", r"\bpotential\b", r"\bmaybe\b"
    ),
    "ENABLER": _patterns(
        r"\benabl(e|es|er|ing)\b", r"\bhelps?\b", r"\bsupport(s)?\b", r"\bworks\s+well\b", r"\bleverage\b"
    ),
    "BLOCKER": _patterns(
        r"\bblocked\b", r"\bblocker\b", r"\bbottleneck\b", r"\bbarrier\b", r"\bcan'?t\b", r"\bcannot\b",
        r"\bwon'?t\b", r"\bconstraint(s)?\b",
    ),
    "ASSUMPTION": _patterns(
        r"\bassum(e|ing|ption)\b", r"\bprobably\b", r"\bI\s+think\b", r"\bit\s+seems\b", r"\blikely\b"
    ),
}

TEMPORAL_PATTERNS: dict[TemporalIntent, list[re.Pattern[str]]] = {
    TemporalIntent.LIMIT: _patterns(
        r"\bblocked\b", r"\bcan'?t\b", r"\bcannot\b", r"\bwon'?t\b", r"\blimited\b", r"\bmust\b",
        r"\bneed(s)?\b", r"\brequire(s|d)?\b", r"\bsign[- ]off\b", r"\bapproval\b",
    ),
    TemporalIntent.FUTURE: _patterns(
        r"\bwant\b", r"\bhope\b", r"\bwish\b", r"\bdream\b", r"\bimagine\b", r"\bfuture\b",
        r"\bshould\s+be\b", r"\bwould\s+love\b", r"\bwill\b",
    ),
    TemporalIntent.METHOD: _patterns(
        r"\blet'?s\b", r"\bwe\s+could\b", r"\btry\b", r"\bapproach\b", r"\bstep(s)?\b", r"\bplan\b"
    ),
}

DOMAIN_PATTERNS: dict[Domain, re.Pattern[str]] = {
    Domain.PEOPLE: re.compile(r"\b(people|team|staff|skills?|culture|leadership)\b", re.IGNORECASE),
    Domain.OPERATIONS: re.compile(
        r"\b(ops|operations?|process(es)?|workflow|governance|decision(s)?|organisation|organization)\b",
        re.IGNORECASE,
    ),
    Domain.CUSTOMER: re.compile(r"\b(customer(s)?|client(s)?|user(s)?|service|experience)\b", re.IGNORECASE),
    Domain.TECHNOLOGY: re.compile(
        r"\b(tech|technology|system(s)?|platform|tool(s)?|software|data|ai)\b", re.IGNORECASE
    ),
    Domain.REGULATION: re.compile(
        r"\b(regulation(s)?|regulatory|compliance|legal|policy|audit|risk)\b", re.IGNORECASE
    ),
}

QUESTION_PATTERN = re.compile(r"\?\s*$|\b(how\s+do\s+we|what\s+if|why\s+do\s+we)\b", re.IGNORECASE)


def _count(text: str, patterns: list[re.Pattern[str]]) -> int:
    return sum(1 for p in patterns if p.search(text))


def score_domains(text: str) -> list[tuple[Domain, int]]:
    """Keyword hit counts per domain, highest first, zero scores dropped."""
    t = (text or "").strip().lower()
    scores = [(d, len(p.findall(t))) for d, p in DOMAIN_PATTERNS.items()]
    # sorted() is stable so ties keep the declared domain order
    return sorted([s for s in scores if s[1] > 0], key=lambda s: -s[1])


def interpret_utterance(text: str) -> Interpretation:
    """Keyword interpretation of one utterance."""
    t = (text or "").strip()

    tags = [tag for tag, pats in COGNITIVE_PATTERNS.items() if _count(t, pats) > 0]
    if QUESTION_PATTERN.search(t):
        tags.insert(0, "QUESTION")

    temporal_scores = {k: _count(t, pats) for k, pats in TEMPORAL_PATTERNS.items()}
    temporal = TemporalIntent.CURRENT
    best = 0
    for k in (TemporalIntent.LIMIT, TemporalIntent.FUTURE, TemporalIntent.METHOD):
        if temporal_scores[k] > best:
            best = temporal_scores[k]
            temporal = k

    domain_scores = score_domains(t)
    domains = [d for d, _ in domain_scores]
    domain = domains[0] if domains else Domain.OPERATIONS
    if not domains:
        domains = [domain]

    signal = best + (domain_scores[0][1] if domain_scores else 0) + min(2, len(tags))
    confidence = 0.35 if signal <= 0 else min(1.0, 0.35 + 0.65 * (signal / 6))
    if confidence >= 0.7:
        weight = ConfidenceWeight.HIGH
    elif confidence >= 0.5:
        weight = ConfidenceWeight.MID
    else:
        weight = ConfidenceWeight.LOW

    return Interpretation(
        domain=domain,
        domains=domains,
        intent_types=tags,
        temporal_intent=temporal,
        confidence_weight=weight,
        confidence=confidence,
    )


def primary_type(interpretation: Interpretation) -> str:
    """Theme intent type derived from temporal intent and cognitive tags."""
    i = interpretation
    if i.has_tag("QUESTION"):
        return "QUESTION"
    if i.temporal_intent is TemporalIntent.LIMIT or i.has_tag("BLOCKER"):
        return "CONSTRAINT"
    if i.temporal_intent is TemporalIntent.METHOD:
        return "ACTION"
    if i.has_tag("ENABLER"):
        return "ENABLER"
    if i.has_tag("OPPORTUNITY"):
        return "OPPORTUNITY"
    if i.has_tag("VISION") or i.has_tag("OUTCOME"):
        return "VISIONARY"
    return "INSIGHT"


def valence(interpretation: Interpretation) -> Valence:
    """Aspiration, constraint or neutral."""
    i = interpretation
    if i.temporal_intent is TemporalIntent.LIMIT or i.has_tag("BLOCKER"):
        return Valence.CONSTRAINT
    if i.temporal_intent is TemporalIntent.FUTURE and any(
        i.has_tag(t) for t in ("VISION", "OUTCOME", "OPPORTUNITY", "ENABLER")
    ):
        return Valence.ASPIRATION
    return Valence.NEUTRAL
