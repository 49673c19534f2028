"""
Read-time synthesis over themes and dependency edges.

Nothing here is stored: every view is recomputed from the theme and edge
maps on demand. Cost is proportional to themes + edges; utterances are
only looked up by id for the bounded example excerpts.
"""

import math
from typing import Mapping

from live_insight.core.dependencies import is_pressure
from live_insight.core.themes import short_label
from live_insight.models.domain import (
    ALL_DOMAINS,
    DependencyEdge,
    Domain,
    DomainSynthesis,
    PressurePoint,
    SynthesisItem,
    Theme,
    Utterance,
    ValenceTally,
)

ASPIRATION_TYPES = frozenset({"VISIONARY", "DREAM", "OPPORTUNITY", "IDEA"})
CONSTRAINT_TYPES = frozenset({"CONSTRAINT", "RISK"})
ENABLER_TYPES = frozenset({"ENABLER", "WHAT_WORKS"})
OPPORTUNITY_TYPES = frozenset({"OPPORTUNITY", "IDEA"})

EXAMPLE_WORDS = 16
EXAMPLES_PER_ITEM = 3


def recency_weight(strength: int, age_ms: float, tau_ms: float) -> float:
    """`strength * (0.4 + 0.6 * exp(-age / tau))`."""
    recency = math.exp(-max(0.0, age_ms) / max(1.0, tau_ms))
    return strength * (0.4 + 0.6 * recency)


def synthesize(
    themes: Mapping[str, Theme],
    utterances: Mapping[str, Utterance],
    now_ms: int,
    tau_ms: float = 12 * 60 * 1000,
    min_strength: int = 2,
    top_k: int = 3,
) -> dict[Domain, DomainSynthesis]:
    """
    Rank theme excerpts per domain and category.

    Themes below `min_strength` are skipped. An opportunity theme lands
    in both the aspirations and the opportunities bucket.
    """
    buckets: dict[Domain, DomainSynthesis] = {d: DomainSynthesis() for d in ALL_DOMAINS}

    for theme in themes.values():
        if theme.strength < min_strength:
            continue

        supporting = [utterances[i] for i in theme.supporting_utterance_ids if i in utterances]
        if not supporting:
            continue

        last_seen = max([theme.last_seen_at_ms] + [u.created_at_ms for u in supporting])
        supporting.sort(key=lambda u: u.created_at_ms)
        examples = [
            short_label(u.raw_text, EXAMPLE_WORDS)
            for u in reversed(supporting[-EXAMPLES_PER_ITEM:])
        ]

        intent_type = theme.intent_type.strip().upper()
        item = SynthesisItem(
            theme_id=theme.id,
            label=theme.label,
            intent_type=intent_type,
            strength=theme.strength,
            last_seen_at_ms=last_seen,
            weight=recency_weight(theme.strength, now_ms - last_seen, tau_ms),
            examples=examples,
        )

        target = buckets[theme.domain]
        if intent_type in ASPIRATION_TYPES:
            target.aspirations.append(item)
        if intent_type in CONSTRAINT_TYPES:
            target.constraints.append(item)
        if intent_type in ENABLER_TYPES:
            target.enablers.append(item)
        if intent_type in OPPORTUNITY_TYPES:
            target.opportunities.append(item)

    def top(items: list[SynthesisItem]) -> list[SynthesisItem]:
        return sorted(items, key=lambda x: x.weight, reverse=True)[:top_k]

    return {
        d: DomainSynthesis(
            aspirations=top(s.aspirations),
            constraints=top(s.constraints),
            enablers=top(s.enablers),
            opportunities=top(s.opportunities),
        )
        for d, s in buckets.items()
    }


def synthesis_total(synthesis: Mapping[Domain, DomainSynthesis]) -> int:
    return sum(s.total for s in synthesis.values())


def pressure_points(
    edges: Mapping[str, DependencyEdge],
    domain_tallies: Mapping[Domain, ValenceTally],
    limit: int = 5,
) -> list[PressurePoint]:
    """
    Edges where constraints dominate, ranked by
    `(constraints - aspirations) * 3 + max(0, count - 2)`.

    With no qualifying edge yet, falls back to per-domain tallies so the
    dashboard has something to show early in the session.
    """
    via_edges = [
        PressurePoint(
            id=e.id,
            from_domain=e.from_domain,
            to_domain=e.to_domain,
            score=(e.constraint_count - e.aspiration_count) * 3 + max(0, e.count - 2),
            constraint_count=e.constraint_count,
            aspiration_count=e.aspiration_count,
            count=e.count,
        )
        for e in edges.values()
        if is_pressure(e)
    ]
    if via_edges:
        return sorted(via_edges, key=lambda p: p.score, reverse=True)[:limit]

    by_domain = [
        PressurePoint(
            id=f"pp:{d.value}",
            from_domain=d,
            to_domain=d,
            score=(t.constraint_count - t.aspiration_count) * 3 + max(0, t.constraint_count - 1),
            constraint_count=t.constraint_count,
            aspiration_count=t.aspiration_count,
            count=t.constraint_count,
        )
        for d, t in domain_tallies.items()
        if t.constraint_count >= 2
    ]
    return sorted(by_domain, key=lambda p: p.score, reverse=True)[:limit]


def vision_narrative(synthesis: Mapping[Domain, DomainSynthesis]) -> str | None:
    """Draft future-state narrative; needs aspirations in at least two domains."""
    picks: list[tuple[Domain, SynthesisItem]] = []
    for d in ALL_DOMAINS:
        s = synthesis.get(d)
        if s is None:
            continue
        top = (s.aspirations or s.opportunities or [None])[0]
        if top is not None:
            picks.append((d, top))

    if len(picks) < 2:
        return None

    headline = "; ".join(item.label for _, item in picks[:3] if item.label)
    lines = [
        f"{d.value}: {item.examples[0] if item.examples else item.label}"
        for d, item in picks[:5]
    ]
    return (
        "Future state narrative (draft): The group repeatedly described a future state "
        f"anchored by {headline}. Key phrases by domain: {' • '.join(lines)}."
    )


def domain_narratives(synthesis: Mapping[Domain, DomainSynthesis]) -> dict[Domain, str]:
    """One-paragraph summary per domain from the top two labels of each bucket."""

    def join(items: list[SynthesisItem]) -> str:
        return "; ".join([i.label for i in items if i.label][:2])

    out: dict[Domain, str] = {}
    for d in ALL_DOMAINS:
        s = synthesis.get(d, DomainSynthesis())
        lines = []
        for title, items in (
            ("Aspirations", s.aspirations),
            ("Opportunities", s.opportunities),
            ("Constraints", s.constraints),
            ("Enablers", s.enablers),
        ):
            joined = join(items)
            if joined:
                lines.append(f"{title}: {joined}.")
        out[d] = " ".join(lines)
    return out


def domain_lens(
    domain: Domain,
    synthesis: Mapping[Domain, DomainSynthesis],
    edges: Mapping[str, DependencyEdge],
) -> dict[str, list]:
    """Focused view of one domain: outcomes, outbound and inbound dependencies."""
    s = synthesis.get(domain, DomainSynthesis())
    outcomes = sorted(s.aspirations + s.opportunities, key=lambda x: x.weight, reverse=True)[:5]

    outbound = sorted(
        (e for e in edges.values() if e.from_domain == domain), key=lambda e: e.count, reverse=True
    )[:8]
    inbound = sorted(
        (e for e in edges.values() if e.to_domain == domain), key=lambda e: e.count, reverse=True
    )[:5]

    return {
        "outcomes": outcomes,
        "dependencies": outbound,
        "blockers": [e for e in outbound if is_pressure(e)][:5],
        "enablers": [
            e
            for e in outbound
            if e.count >= 3 and e.aspiration_count >= 2 and e.aspiration_count >= e.constraint_count
        ][:5],
        "inbound": inbound,
    }
