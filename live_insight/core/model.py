"""
Live semantic model for one workshop session.

Owns the data points received from the realtime feed, the utterances
derived from them, and the theme and dependency engines. Everything the
dashboard shows is computed on read from these maps.
"""

import asyncio
from typing import Callable

import structlog

from live_insight.config import Settings, get_settings
from live_insight.core.dependencies import DependencyInferenceEngine, now_ms
from live_insight.core.readiness import (
    ReadinessInputs,
    ReadinessThresholds,
    RevealLatch,
    evaluate_readiness,
)
from live_insight.core.segmenter import segment_data_point, virtual_id
from live_insight.core.snapshot import Snapshot
from live_insight.core.synthesis import (
    domain_narratives,
    pressure_points,
    synthesis_total,
    synthesize,
    vision_narrative,
)
from live_insight.core.themes import Embedder, ThemeClusteringEngine
from live_insight.models.domain import (
    Classification,
    DataPoint,
    DialoguePhase,
    Utterance,
)
from live_insight.models.schemas import DashboardResponse
from live_insight.services.interpretation import (
    Interpreter,
    interpret_utterance,
    primary_type,
    valence,
)

logger = structlog.get_logger(__name__)


async def _no_embedding(text: str) -> list[float] | None:
    return None


class LiveModel:
    """
    In-memory semantic state of a live session.

    Data point creation is idempotent by id. Theme and dependency
    processing are one-shot per utterance id, so the same utterance can be
    offered any number of times (feed redelivery, snapshot reload) without
    double counting.
    """

    def __init__(
        self,
        session_id: str,
        settings: Settings | None = None,
        interpreter: Interpreter = interpret_utterance,
        embed: Embedder | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.session_id = session_id
        self.settings = settings or get_settings()
        self.interpreter = interpreter
        self.embed = embed or _no_embedding
        self.clock = clock

        self.dialogue_phase = DialoguePhase.REIMAGINE
        self.data_points: dict[str, DataPoint] = {}
        self.utterances: dict[str, Utterance] = {}
        # data point id -> ids of the utterances split from it
        self.parts: dict[str, list[str]] = {}
        self.selected_utterance_id: str | None = None

        self.themes = self._new_theme_engine()
        self.dependencies = DependencyInferenceEngine(clock=clock)
        self.reveal_latch = RevealLatch(enabled=self.settings.reveal_latch)
        self._enrichment: set[asyncio.Task] = set()

    def _new_theme_engine(self) -> ThemeClusteringEngine:
        return ThemeClusteringEngine(
            embed=self.embed,
            similarity_threshold=self.settings.similarity_threshold,
            label_words=self.settings.theme_label_words,
            support_cap=self.settings.theme_support_cap,
        )

    # -------------------------------------------------------------------------
    # Feed merges
    # -------------------------------------------------------------------------

    def add_data_point(self, data_point: DataPoint) -> list[Utterance]:
        """
        Merge a newly persisted data point.

        Returns the utterances it produced, or an empty list if the data
        point was already known.
        """
        if data_point.id in self.data_points:
            logger.debug("data_point_duplicate", data_point_id=data_point.id)
            return []
        self.data_points[data_point.id] = data_point

        created: list[Utterance] = []
        for part in segment_data_point(data_point):
            if not part.text or part.id in self.utterances:
                continue
            interp = self.interpreter(part.text)
            utterance = Utterance(
                id=part.id,
                parent_id=part.parent_id,
                created_at_ms=part.created_at_ms,
                raw_text=part.text,
                source_chunk_ref=data_point.transcript_chunk,
                domain=interp.domain,
                domains=interp.domains,
                intent_type=primary_type(interp),
                valence=valence(interp),
                confidence_weight=interp.confidence_weight.weight,
                dialogue_phase=data_point.dialogue_phase,
                intent=data_point.intent,
            )
            self.utterances[utterance.id] = utterance
            self.parts.setdefault(utterance.parent_id, []).append(utterance.id)
            self.themes.observe(utterance)
            self.dependencies.process(utterance)
            created.append(utterance)

        logger.info(
            "data_point_added",
            data_point_id=data_point.id,
            utterances=len(created),
            total_utterances=len(self.utterances),
        )
        self._schedule_enrichment(created)
        return created

    def apply_classification(self, data_point_id: str, classification: Classification) -> bool:
        """Attach a server classification. Unknown ids are ignored."""
        data_point = self.data_points.get(data_point_id)
        if data_point is None:
            return False
        data_point.classification = classification
        return True

    def apply_annotation(
        self,
        data_point_id: str,
        dialogue_phase: DialoguePhase | None,
        intent: str | None,
    ) -> bool:
        """Attach phase and intent annotations to a data point and its utterances."""
        data_point = self.data_points.get(data_point_id)
        if data_point is None:
            return False
        if dialogue_phase is not None:
            data_point.dialogue_phase = dialogue_phase
        if intent is not None:
            data_point.intent = intent

        for utterance_id in self.parts.get(data_point_id, []):
            utterance = self.utterances[utterance_id]
            if dialogue_phase is not None:
                utterance.dialogue_phase = dialogue_phase
            if intent is not None:
                utterance.intent = intent
        return True

    def select(self, utterance_id: str | None) -> str | None:
        """Select an utterance; a split data point id maps to its first part."""
        if utterance_id is None:
            self.selected_utterance_id = None
        elif utterance_id in self.utterances:
            self.selected_utterance_id = utterance_id
        elif virtual_id(utterance_id, 0) in self.utterances:
            self.selected_utterance_id = virtual_id(utterance_id, 0)
        return self.selected_utterance_id

    # -------------------------------------------------------------------------
    # Theme enrichment
    # -------------------------------------------------------------------------

    def _schedule_enrichment(self, utterances: list[Utterance]) -> None:
        if not utterances:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: utterances stay lexical until enrich() is awaited
            return
        for utterance in utterances:
            task = loop.create_task(self.themes.process(utterance))
            self._enrichment.add(task)
            task.add_done_callback(self._enrichment.discard)

    async def enrich(self, utterances: list[Utterance] | None = None) -> None:
        """Embed and cluster the given (or all) utterances not yet processed."""
        for utterance in list(utterances or self.utterances.values()):
            await self.themes.process(utterance)

    def resume_enrichment(self) -> None:
        """Reschedule utterances that have no embedding theme yet."""
        self._schedule_enrichment(
            [u for u in self.utterances.values() if u.id not in self.themes.assignments]
        )

    async def wait_enrichment(self) -> None:
        """Wait for scheduled embedding tasks to settle."""
        while self._enrichment:
            await asyncio.gather(*list(self._enrichment), return_exceptions=True)

    def cancel_enrichment(self) -> None:
        for task in list(self._enrichment):
            task.cancel()
        self._enrichment.clear()

    # -------------------------------------------------------------------------
    # Read views
    # -------------------------------------------------------------------------

    def dashboard(self, now: int | None = None) -> DashboardResponse:
        """Recompute every derived view from the theme and edge maps."""
        s = self.settings
        now = self.clock() if now is None else now

        themes, _ = self.themes.active()
        using_lexical = self.themes.using_lexical
        min_strength = 1 if using_lexical else s.synthesis_min_strength

        synthesis = synthesize(
            themes,
            self.utterances,
            now_ms=now,
            tau_ms=s.recency_tau_ms,
            min_strength=min_strength,
            top_k=s.synthesis_top_k,
        )
        links = self.dependencies.links(
            now=now, min_count=s.edge_visible_min_count, decay_ms=s.edge_decay_ms
        )
        points = pressure_points(
            self.dependencies.edges, self.dependencies.domain_tallies, limit=s.pressure_point_limit
        )
        narrative = vision_narrative(synthesis)

        report = evaluate_readiness(
            ReadinessInputs(
                total_utterances=len(self.utterances),
                confident_utterances=sum(
                    1 for u in self.utterances.values() if u.confidence_weight >= 1.0
                ),
                dependency_processed=self.dependencies.processed_count,
                synthesis_items=synthesis_total(synthesis),
                narrative=narrative,
                dependency_links=len(links),
                pressure_points=len(points),
            ),
            ReadinessThresholds(
                min_confident=s.reveal_min_confident,
                min_dependency_processed=s.reveal_min_dependency_processed,
                min_synthesis_items=s.reveal_min_synthesis_items,
                min_narrative_chars=s.reveal_min_narrative_chars,
            ),
        )

        return DashboardResponse(
            session_id=self.session_id,
            dialogue_phase=self.dialogue_phase,
            data_point_count=len(self.data_points),
            utterance_count=len(self.utterances),
            processed_count=self.dependencies.processed_count,
            selected_utterance_id=self.selected_utterance_id,
            using_lexical_themes=using_lexical,
            themes=sorted(themes.values(), key=lambda t: t.strength, reverse=True),
            synthesis=synthesis,
            dependency_edges=sorted(
                self.dependencies.edges.values(), key=lambda e: e.count, reverse=True
            ),
            dependency_links=links,
            pressure_points=points,
            vision_narrative=narrative,
            domain_narratives=domain_narratives(synthesis),
            readiness=self.reveal_latch.update(report),
        )

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            dialogue_phase=self.dialogue_phase,
            data_points={k: v.model_copy(deep=True) for k, v in self.data_points.items()},
            utterances={k: v.model_copy(deep=True) for k, v in self.utterances.items()},
            selected_utterance_id=self.selected_utterance_id,
            themes={k: v.model_copy(deep=True) for k, v in self.themes.themes.items()},
            utterance_theme_assignments=dict(self.themes.assignments),
            dependency_edges={
                k: v.model_copy(deep=True) for k, v in self.dependencies.edges.items()
            },
            processed_utterance_ids=sorted(self.dependencies.processed_ids),
            processed_count=self.dependencies.processed_count,
        )

    def load_snapshot(self, snapshot: Snapshot) -> None:
        """
        Replace the whole model with a decoded snapshot.

        New engines are built off to the side and swapped in at the end so
        a failure part way leaves the current state untouched.
        """
        utterances = {k: v.model_copy(deep=True) for k, v in snapshot.utterances.items()}
        ordered = sorted(utterances.values(), key=lambda u: u.created_at_ms)

        themes = self._new_theme_engine()
        themes.restore(
            {k: v.model_copy(deep=True) for k, v in snapshot.themes.items()},
            snapshot.utterance_theme_assignments,
            ordered,
        )
        dependencies = DependencyInferenceEngine(clock=self.clock)
        dependencies.restore(
            {k: v.model_copy(deep=True) for k, v in snapshot.dependency_edges.items()},
            set(snapshot.processed_utterance_ids),
            ordered,
        )

        self.cancel_enrichment()
        self.dialogue_phase = snapshot.dialogue_phase
        self.data_points = {k: v.model_copy(deep=True) for k, v in snapshot.data_points.items()}
        self.utterances = utterances
        self.parts = {}
        for utterance in ordered:
            self.parts.setdefault(utterance.parent_id, []).append(utterance.id)
        self.themes = themes
        self.dependencies = dependencies
        self.reveal_latch.reset()
        self.selected_utterance_id = None
        self.select(snapshot.selected_utterance_id)

        logger.info(
            "snapshot_loaded",
            session_id=self.session_id,
            utterances=len(self.utterances),
            themes=len(self.themes.themes),
            edges=len(self.dependencies.edges),
        )

        # Utterances saved before their embedding resolved get another chance
        self._schedule_enrichment([u for u in ordered if u.id not in themes.assignments])
