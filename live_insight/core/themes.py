"""
Incremental theme clustering.

Each utterance is embedded once and compared against the running
centroids of themes that share its (domain, intent type). A close enough
match strengthens the theme and moves its centroid; otherwise a new
theme is opened. A keyword-signature index runs alongside so that
groupings exist before any embedding has resolved.
"""

import asyncio
import math
import re
from typing import Awaitable, Callable
from uuid import uuid4

import structlog

from live_insight.models.domain import Theme, Utterance

logger = structlog.get_logger(__name__)

Embedder = Callable[[str], Awaitable[list[float] | None]]

STOP_WORDS = frozenset(
    """
    the a an and or but so because to of in on for with as at by is are was were be been being
    we our us you your they their it this that these those will would should could can cannot can't
    not no yes do does did done have has had more most less very really just rather than into from across
    """.split()
)

LEXICAL_LABEL_WORDS = 12
SIGNATURE_TOKENS = 6
SIGNATURE_MAX_CHARS = 42


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity over the shared prefix of two vectors."""
    n = min(len(a), len(b))
    dot = sum(a[i] * b[i] for i in range(n))
    norm_a = math.sqrt(sum(x * x for x in a[:n]))
    norm_b = math.sqrt(sum(x * x for x in b[:n]))
    if not (math.isfinite(norm_a) and math.isfinite(norm_b)) or norm_a <= 0 or norm_b <= 0:
        return 0.0
    return dot / (norm_a * norm_b)


def short_label(text: str, max_words: int) -> str:
    """First `max_words` words of text."""
    return " ".join((text or "").split()[:max_words])


def theme_signature(text: str) -> str:
    """Keyword signature: up to six distinct content words joined by dashes."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", (text or "").strip().lower())
    tokens = [t for t in cleaned.split() if len(t) >= 3 and t not in STOP_WORDS]

    unique: list[str] = []
    for token in tokens:
        if token not in unique:
            unique.append(token)
        if len(unique) >= SIGNATURE_TOKENS:
            break

    words = unique or cleaned.split()[:4]
    return ("-".join(words) or "misc")[:SIGNATURE_MAX_CHARS]


class LexicalThemeIndex:
    """
    Keyword-signature grouping that ignores embeddings.

    Utterances with the same domain, intent type and signature share a
    theme. Updated incrementally, one utterance at a time.
    """

    def __init__(self, support_cap: int = 50) -> None:
        self.support_cap = support_cap
        self.themes: dict[str, Theme] = {}
        self.assignments: dict[str, str] = {}

    def add(self, utterance: Utterance) -> Theme:
        existing = self.assignments.get(utterance.id)
        if existing:
            return self.themes[existing]

        sig = theme_signature(utterance.raw_text)
        theme_id = f"auto:{utterance.domain.value}:{utterance.intent_type}:{sig}"
        theme = self.themes.get(theme_id)
        if theme is None:
            theme = Theme(
                id=theme_id,
                domain=utterance.domain,
                intent_type=utterance.intent_type,
                label=short_label(utterance.raw_text, LEXICAL_LABEL_WORDS),
                strength=1,
            )
            self.themes[theme_id] = theme
        else:
            theme.strength += 1

        theme.add_support(utterance.id, utterance.created_at_ms, self.support_cap)
        self.assignments[utterance.id] = theme_id
        return theme

    def clear(self) -> None:
        self.themes.clear()
        self.assignments.clear()


class ThemeClusteringEngine:
    """
    Embedding-based online clustering of utterances into themes.

    Every utterance is processed at most once. Assignment is final: an
    utterance never moves to another theme.
    """

    def __init__(
        self,
        embed: Embedder,
        similarity_threshold: float = 0.78,
        label_words: int = 7,
        support_cap: int = 50,
    ) -> None:
        self.embed = embed
        self.similarity_threshold = similarity_threshold
        self.label_words = label_words
        self.support_cap = support_cap

        self.themes: dict[str, Theme] = {}
        self.assignments: dict[str, str] = {}
        self.lexical = LexicalThemeIndex(support_cap=support_cap)
        self._seen: set[str] = set()

    def observe(self, utterance: Utterance) -> None:
        """Feed the lexical index. Cheap and synchronous."""
        self.lexical.add(utterance)

    async def process(self, utterance: Utterance) -> Theme | None:
        """
        Embed an utterance and assign it to a theme.

        Returns None when the utterance was already handled or the
        embedding could not be obtained. Failed embeddings are not
        retried; the utterance stays in the lexical grouping only.
        """
        if utterance.id in self._seen or utterance.id in self.assignments:
            return None
        self._seen.add(utterance.id)

        try:
            vector = await self.embed(utterance.raw_text)
        except asyncio.CancelledError:
            # Cancelled mid-flight: leave it eligible for a later pass
            self._seen.discard(utterance.id)
            raise
        except Exception as e:
            logger.warning("theme_embedding_failed", utterance_id=utterance.id, error=str(e))
            return None

        if not vector:
            return None
        return self.assign(utterance, vector)

    def assign(self, utterance: Utterance, vector: list[float]) -> Theme:
        """Assign an embedded utterance to its best theme or open a new one."""
        existing = self.assignments.get(utterance.id)
        if existing:
            return self.themes[existing]
        self._seen.add(utterance.id)

        best: Theme | None = None
        best_sim = -1.0
        for theme in self.themes.values():
            if theme.domain != utterance.domain or theme.intent_type != utterance.intent_type:
                continue
            sim = cosine_similarity(vector, theme.centroid)
            if sim > best_sim:
                best, best_sim = theme, sim

        if best is not None and best_sim >= self.similarity_threshold:
            theme = best
            theme.fold(vector)
            logger.debug(
                "theme_strengthened",
                theme_id=theme.id,
                strength=theme.strength,
                similarity=round(best_sim, 3),
            )
        else:
            theme = Theme(
                id=f"theme:{utterance.domain.value}:{utterance.intent_type}:{uuid4().hex[:12]}",
                domain=utterance.domain,
                intent_type=utterance.intent_type,
                label=short_label(utterance.raw_text, self.label_words),
                strength=1,
                centroid=list(vector),
            )
            self.themes[theme.id] = theme
            logger.info("theme_created", theme_id=theme.id, label=theme.label)

        theme.add_support(utterance.id, utterance.created_at_ms, self.support_cap)
        self.assignments[utterance.id] = theme.id
        utterance.theme_id = theme.id
        return theme

    @property
    def using_lexical(self) -> bool:
        return not self.themes

    def active(self) -> tuple[dict[str, Theme], dict[str, str]]:
        """Embedding themes when any exist, otherwise the lexical grouping."""
        if self.using_lexical:
            return self.lexical.themes, self.lexical.assignments
        return self.themes, self.assignments

    def restore(
        self,
        themes: dict[str, Theme],
        assignments: dict[str, str],
        utterances: list[Utterance],
    ) -> None:
        """Replace state from a snapshot and rebuild the lexical index."""
        self.themes = dict(themes)
        self.assignments = dict(assignments)
        self._seen = set(assignments)
        self.lexical.clear()
        for u in utterances:
            self.lexical.add(u)
