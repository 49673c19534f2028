"""
Tests for the realtime feed: SSE parsing, the subscription loop, the
reconciler and the live model it feeds.
"""

import asyncio
import json

import httpx
import pytest
from conftest import make_data_point

from live_insight.core.model import LiveModel
from live_insight.core.reconciler import RealtimeReconciler
from live_insight.models.domain import DialoguePhase, Domain
from live_insight.services.feed import FeedSubscription, iter_sse


def created_event(
    dp_id: str,
    text: str,
    phase: str | None = None,
    start_ms: int = 0,
    end_ms: int = 10_000,
    created_at: str | int | None = "2026-03-02T10:00:00Z",
) -> dict:
    return {
        "id": f"evt-{dp_id}",
        "type": "datapoint.created",
        "createdAt": created_at,
        "payload": {
            "dataPoint": {
                "id": dp_id,
                "rawText": text,
                "source": "deepgram",
                "createdAt": created_at,
                "dialoguePhase": phase,
            },
            "transcriptChunk": {
                "startTimeMs": start_ms,
                "endTimeMs": end_ms,
                "confidence": 0.91,
                "source": "deepgram",
            },
        },
    }


def classification_event(dp_id: str, primary_type: str = "CONSTRAINT") -> dict:
    return {
        "id": f"cls-{dp_id}",
        "type": "classification.updated",
        "payload": {
            "dataPointId": dp_id,
            "classification": {"primaryType": primary_type, "confidence": 0.8, "keywords": ["approval"]},
        },
    }


def annotation_event(dp_id: str, phase: str = "CONSTRAINTS", intent: str | None = "BLOCKER") -> dict:
    return {
        "id": f"ann-{dp_id}",
        "type": "annotation.updated",
        "payload": {"dataPointId": dp_id, "annotation": {"dialoguePhase": phase, "intent": intent}},
    }


async def lines(*items: str):
    for item in items:
        yield item


@pytest.fixture
def reconciler(live_model: LiveModel) -> RealtimeReconciler:
    return RealtimeReconciler(live_model, pending_cap=3)


class TestSSEParser:
    """Server-sent event wire parsing."""

    @pytest.mark.asyncio
    async def test_named_events_and_comments(self):
        events = [
            e
            async for e in iter_sse(
                lines(
                    "event: open",
                    "data: {}",
                    "",
                    ": ping",
                    "",
                    "event: datapoint.created",
                    "id: 7",
                    'data: {"a":',
                    "data: 1}",
                    "",
                )
            )
        ]

        assert [e.event for e in events] == ["open", "datapoint.created"]
        assert events[1].data == '{"a":\n1}'
        assert events[1].id == "7"

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line(self):
        events = [e async for e in iter_sse(lines("data: tail"))]

        assert events[0].event == "message"
        assert events[0].data == "tail"


class TestFeedSubscription:
    """Background reader over httpx."""

    @pytest.mark.asyncio
    async def test_delivers_named_events_and_skips_heartbeats(self):
        body = (
            "event: open\ndata: {}\n\n"
            ": ping\n\n"
            f"event: datapoint.created\ndata: {json.dumps(created_event('dp-1', 'Hi.'))}\n\n"
        )
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})
        )
        received: list[tuple[str, str]] = []
        got = asyncio.Event()

        def handler(name: str, data: str) -> None:
            received.append((name, data))
            got.set()

        async with httpx.AsyncClient(transport=transport, base_url="http://workshop.test/api") as client:
            sub = FeedSubscription(client, "ws-1", handler, reconnect_delay_s=0.01)
            sub.open()
            try:
                await asyncio.wait_for(got.wait(), timeout=2)
            finally:
                sub.close()

        assert received[0][0] == "datapoint.created"
        assert json.loads(received[0][1])["payload"]["dataPoint"]["id"] == "dp-1"
        assert not sub.is_open

    @pytest.mark.asyncio
    async def test_reconnects_after_error(self):
        attempts = 0
        connected = asyncio.Event()

        def respond(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise httpx.ConnectError("refused", request=request)
            connected.set()
            return httpx.Response(200, text=": ping\n\n")

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(respond), base_url="http://workshop.test/api"
        ) as client:
            sub = FeedSubscription(client, "ws-1", lambda name, data: None, reconnect_delay_s=0.01)
            assert sub.path == "/workshops/ws-1/events"
            sub.open()
            try:
                await asyncio.wait_for(connected.wait(), timeout=2)
            finally:
                sub.close()

        assert attempts >= 2


class TestReconciler:
    """At-least-once, unordered merges keyed by data point id."""

    def test_created_event_adds_data_point(self, reconciler, live_model):
        assert reconciler.handle("datapoint.created", json.dumps(created_event("dp-1", "We need data.")))

        dp = live_model.data_points["dp-1"]
        assert dp.created_at_ms == 1_772_445_600_000
        assert dp.transcript_chunk.end_time_ms == 10_000
        assert "dp-1" in live_model.utterances

    def test_redelivered_created_event_is_ignored(self, reconciler, live_model):
        """Applying the same created event twice leaves counts unchanged."""
        event = created_event("dp-1", "We need sign-off from compliance before shipping.")
        reconciler.handle("datapoint.created", event)
        edges = {k: e.count for k, e in live_model.dependencies.edges.items()}
        utterances = len(live_model.utterances)

        assert reconciler.handle("datapoint.created", event) is False

        assert len(live_model.utterances) == utterances
        assert {k: e.count for k, e in live_model.dependencies.edges.items()} == edges
        assert reconciler.ignored_count == 1

    def test_update_before_create_is_dropped(self, reconciler, live_model):
        """An update for an unknown id is ignored; the later create still lands."""
        assert reconciler.handle("classification.updated", classification_event("dp-9")) is False

        reconciler.handle("datapoint.created", created_event("dp-9", "Legal review blocks launch."))

        assert live_model.data_points["dp-9"].classification is None
        assert reconciler.handle("classification.updated", classification_event("dp-9"))
        assert live_model.data_points["dp-9"].classification.primary_type == "CONSTRAINT"

    def test_annotation_reaches_every_sentence(self, reconciler, live_model):
        reconciler.handle("datapoint.created", created_event("dp-1", "We need data. The team agrees."))

        assert reconciler.handle("annotation.updated", annotation_event("dp-1"))

        parts = [u for u in live_model.utterances.values() if u.parent_id == "dp-1"]
        assert len(parts) == 2
        assert all(u.dialogue_phase is DialoguePhase.CONSTRAINTS for u in parts)
        assert all(u.intent == "BLOCKER" for u in parts)

    def test_malformed_events_are_rejected(self, reconciler):
        assert reconciler.handle("datapoint.created", "{not json") is False
        assert reconciler.handle("datapoint.created", {"type": "datapoint.created", "payload": {}}) is False
        assert reconciler.handle("classification.updated", created_event("dp-1", "x")) is False

        assert reconciler.rejected_count == 3

    def test_remembered_phase_is_applied(self, reconciler, live_model):
        """A created event without a phase takes the phase active at capture time."""
        reconciler.remember_phase(0, 10_000, "deepgram", "We need data.", DialoguePhase.DEFINE_APPROACH)

        reconciler.handle("datapoint.created", created_event("dp-1", "We need data. "))

        assert live_model.data_points["dp-1"].dialogue_phase is DialoguePhase.DEFINE_APPROACH
        assert reconciler.pending_phases == {}

    def test_server_phase_wins(self, reconciler, live_model):
        reconciler.remember_phase(0, 10_000, "deepgram", "We need data.", DialoguePhase.DEFINE_APPROACH)

        reconciler.handle("datapoint.created", created_event("dp-1", "We need data.", phase="reimagine"))

        assert live_model.data_points["dp-1"].dialogue_phase is DialoguePhase.REIMAGINE

    def test_pending_phases_are_bounded(self, reconciler):
        for i in range(5):
            reconciler.remember_phase(i, i + 1, "deepgram", "text", DialoguePhase.REIMAGINE)

        assert len(reconciler.pending_phases) == 3
        assert next(iter(reconciler.pending_phases)).startswith("2:3:")


class TestLiveModel:
    """Merges, selection, enrichment and the dashboard view."""

    def test_select_maps_data_point_to_first_sentence(self, live_model):
        live_model.add_data_point(make_data_point("dp-1", "First point. Second point."))

        assert live_model.select("dp-1") == "dp-1::u0"
        assert live_model.select("unknown") == "dp-1::u0"
        assert live_model.select(None) is None

    def test_dashboard_is_populated_before_embeddings(self, live_model, sample_utterances):
        """Lexical themes feed synthesis while no embedding has resolved."""
        for i, text in enumerate(sample_utterances):
            live_model.add_data_point(make_data_point(f"dp-{i}", text))

        dashboard = live_model.dashboard()

        assert dashboard.using_lexical_themes
        assert dashboard.utterance_count == len(sample_utterances)
        assert dashboard.processed_count == len(sample_utterances)
        assert dashboard.themes
        assert dashboard.synthesis[Domain.CUSTOMER].aspirations
        assert set(dashboard.domain_narratives) == set(Domain)

    @pytest.mark.asyncio
    async def test_enrichment_switches_to_embedding_themes(self, test_settings, clock, mock_embedder):
        model = LiveModel("ws-1", settings=test_settings, embed=mock_embedder, clock=clock)
        model.add_data_point(make_data_point("dp-1", "We need data. The platform helps staff."))

        await model.wait_enrichment()

        assert len(mock_embedder.calls) == 2
        assert not model.dashboard().using_lexical_themes
        assert all(u.theme_id for u in model.utterances.values())

    @pytest.mark.asyncio
    async def test_cancelled_enrichment_can_run_again(self, test_settings, clock):
        gate = asyncio.Event()

        async def held_embedder(text: str) -> list[float]:
            await gate.wait()
            return [1.0, 0.0, 0.0]

        model = LiveModel("ws-1", settings=test_settings, embed=held_embedder, clock=clock)
        model.add_data_point(make_data_point("dp-1", "We need better data."))
        await asyncio.sleep(0)

        model.cancel_enrichment()
        for _ in range(3):
            await asyncio.sleep(0)
        gate.set()
        await model.enrich()
        await model.wait_enrichment()

        assert "dp-1" in model.themes.assignments

    @pytest.mark.asyncio
    async def test_resume_reschedules_cancelled_utterances(self, test_settings, clock):
        gate = asyncio.Event()

        async def held_embedder(text: str) -> list[float]:
            await gate.wait()
            return [1.0, 0.0, 0.0]

        model = LiveModel("ws-1", settings=test_settings, embed=held_embedder, clock=clock)
        model.add_data_point(make_data_point("dp-1", "We need better data."))
        await asyncio.sleep(0)
        model.cancel_enrichment()
        for _ in range(3):
            await asyncio.sleep(0)

        gate.set()
        model.resume_enrichment()
        await model.wait_enrichment()

        assert model.utterances["dp-1"].theme_id == model.themes.assignments["dp-1"]
