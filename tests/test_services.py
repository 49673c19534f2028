"""
Tests for the workshop server client, the embedding service and the
session registry.
"""

import json
from types import SimpleNamespace

import httpx
import pytest
from conftest import FakeProvider, workshop_transport

from live_insight.core.sessions import OUTBOX_SIZE, SessionRegistry
from live_insight.errors import (
    IngestionForwardFailed,
    PermissionRequired,
    SessionNotFound,
    SnapshotLoadInvalid,
)
from live_insight.models.domain import CaptureState, DialoguePhase, TranscriptChunk, TranscriptSource
from live_insight.services.embeddings import EmbeddingService
from live_insight.services.transcription import ProviderResult
from live_insight.services.workshop_api import WorkshopApiClient


def api_client(test_settings, routes, requests=None) -> WorkshopApiClient:
    http = httpx.AsyncClient(
        transport=workshop_transport(routes, requests), base_url=test_settings.workshop_api_url
    )
    return WorkshopApiClient(test_settings, client=http)


class FakeEmbeddings:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def create(self, model: str, input: str):
        self.calls.append(input)
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])


class TestWorkshopApiClient:
    """Contracts with the workshop server."""

    @pytest.mark.asyncio
    async def test_forward_transcript_body(self, test_settings):
        requests: list[httpx.Request] = []
        client = api_client(test_settings, {("POST", "/api/workshops/ws-1/transcript"): (200, {})}, requests)
        chunk = TranscriptChunk(
            start_time_ms=0, end_time_ms=10_000, text="We need data.", confidence=0.9,
            source=TranscriptSource.DEEPGRAM,
        )

        await client.forward_transcript("ws-1", chunk, DialoguePhase.CONSTRAINTS)
        await client.close()

        body = json.loads(requests[0].content)
        assert body == {
            "speakerId": None,
            "startTime": 0,
            "endTime": 10_000,
            "text": "We need data.",
            "confidence": 0.9,
            "source": "deepgram",
            "dialoguePhase": "CONSTRAINTS",
        }

    @pytest.mark.asyncio
    async def test_forward_failure(self, test_settings):
        client = api_client(test_settings, {("POST", "/api/workshops/ws-1/transcript"): (500, {})})
        chunk = TranscriptChunk(
            start_time_ms=0, end_time_ms=10_000, text="x", source=TranscriptSource.WHISPER
        )

        with pytest.raises(IngestionForwardFailed):
            await client.forward_transcript("ws-1", chunk, DialoguePhase.REIMAGINE)

    @pytest.mark.asyncio
    async def test_embed(self, test_settings):
        path = "/api/admin/workshops/ws-1/live/embedding"
        client = api_client(test_settings, {("POST", path): (200, {"embedding": [1, 2.5]})})

        assert await client.embed("ws-1", "We need data.") == [1.0, 2.5]
        assert await client.embed("ws-1", "   ") is None

    @pytest.mark.asyncio
    async def test_embed_failure_is_none(self, test_settings):
        client = api_client(test_settings, {})

        assert await client.embed("ws-1", "We need data.") is None

    @pytest.mark.asyncio
    async def test_snapshot_without_payload(self, test_settings):
        path = "/api/admin/workshops/ws-1/live/snapshots/s1"
        client = api_client(test_settings, {("GET", path): (200, {"error": "gone"})})

        with pytest.raises(SnapshotLoadInvalid):
            await client.get_snapshot_payload("ws-1", "s1")


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_cached_by_text(self, test_settings):
        embeddings = FakeEmbeddings()
        service = EmbeddingService(test_settings, client=SimpleNamespace(embeddings=embeddings))

        first = await service.embed_text("Imagine a platform.")
        second = await service.embed_text("  Imagine a platform.  ")

        assert first == second == [0.1, 0.2, 0.3]
        assert len(embeddings.calls) == 1
        assert service.cache_size == 1

    @pytest.mark.asyncio
    async def test_blank_text(self, test_settings):
        embeddings = FakeEmbeddings()
        service = EmbeddingService(test_settings, client=SimpleNamespace(embeddings=embeddings))

        assert await service.embed_text("") is None
        assert embeddings.calls == []


class TestSessionRegistry:
    """Per-session wiring and lifecycle."""

    def registry(self, test_settings) -> SessionRegistry:
        return SessionRegistry(
            api_client(test_settings, {}),
            FakeProvider(TranscriptSource.DEEPGRAM, [ProviderResult(text="")]),
            FakeProvider(TranscriptSource.WHISPER, [ProviderResult(text="")]),
            settings=test_settings,
        )

    def test_one_session_per_workshop(self, test_settings):
        registry = self.registry(test_settings)

        session = registry.get_or_create("ws-1")

        assert registry.get_or_create("ws-1") is session
        assert registry.get("ws-1") is session
        assert len(registry) == 1

    def test_unknown_session(self, test_settings):
        with pytest.raises(SessionNotFound):
            self.registry(test_settings).get("ws-9")

    def test_reset_only_replaces_failed_pipeline(self, test_settings):
        registry = self.registry(test_settings)
        session = registry.get_or_create("ws-1")
        original = session.pipeline

        assert registry.reset_pipeline("ws-1") is original

        session.pipeline.dialogue_phase = DialoguePhase.DEFINE_APPROACH
        session.pipeline.fail("Track ended")
        replaced = registry.reset_pipeline("ws-1")

        assert replaced is not original
        assert replaced.state is CaptureState.IDLE
        assert replaced.dialogue_phase is DialoguePhase.DEFINE_APPROACH
        assert session.model is registry.get("ws-1").model

    @pytest.mark.asyncio
    async def test_workshop_embeddings_by_default(self, test_settings):
        registry = self.registry(test_settings)

        embed = registry._embedder("ws-1")

        assert await embed("We need data.") is None

    @pytest.mark.asyncio
    async def test_unread_permission_prompts_are_bounded(self, test_settings):
        session = self.registry(test_settings).get_or_create("ws-1")

        for _ in range(OUTBOX_SIZE + 5):
            with pytest.raises(PermissionRequired):
                await session.pipeline.start(consent=True)

        assert session.outbox.qsize() == OUTBOX_SIZE
        assert session.outbox.get_nowait().data == {"action": "mic_check"}
