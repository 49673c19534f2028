"""
Pytest configuration and fixtures.
"""

import hashlib
import random
from collections.abc import Generator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from live_insight.config import Settings, get_settings
from live_insight.core.model import LiveModel
from live_insight.main import create_app
from live_insight.models.domain import (
    ChunkRef,
    ConfidenceWeight,
    DataPoint,
    Domain,
    Interpretation,
    TemporalIntent,
    TranscriptSource,
)
from live_insight.services.interpretation import interpret_utterance
from live_insight.services.transcription import ProviderResult


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with test-specific configuration."""
    return Settings(
        app_env="development",
        debug=True,
        deepgram_api_key="test_key",
        openai_api_key="test_key",
        workshop_api_url="http://workshop.test/api",
        feed_reconnect_delay_s=0.01,
    )


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeProvider:
    """Scripted transcription provider."""

    def __init__(self, source: TranscriptSource, results: list[ProviderResult | Exception]) -> None:
        self.source = source
        self.results = list(results)
        self.calls = 0
        self.closed = False

    async def transcribe(self, audio: bytes, mime_type: str) -> ProviderResult:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


def stub_interpreter(
    domain: Domain,
    domains: list[Domain] | None = None,
    temporal: TemporalIntent = TemporalIntent.CURRENT,
    tags: list[str] | None = None,
    weight: ConfidenceWeight = ConfidenceWeight.HIGH,
):
    """Interpreter that returns the same interpretation for any text."""

    def interpret(text: str) -> Interpretation:
        return Interpretation(
            domain=domain,
            domains=domains or [domain],
            intent_types=tags or [],
            temporal_intent=temporal,
            confidence_weight=weight,
            confidence=0.9,
        )

    return interpret


class MockEmbedder:
    """Deterministic embeddings seeded from the text hash."""

    def __init__(self, dimensions: int = 32) -> None:
        self.dimensions = dimensions
        self.calls: list[str] = []

    async def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        seed = int(hashlib.md5(text.encode()).hexdigest()[:8], 16)
        rng = random.Random(seed)
        return [rng.uniform(-1, 1) for _ in range(self.dimensions)]


@pytest.fixture
def mock_embedder() -> MockEmbedder:
    return MockEmbedder()


def make_data_point(
    id: str,
    text: str,
    created_at_ms: int = 1_000_000,
    start_ms: int = 0,
    end_ms: int = 10_000,
) -> DataPoint:
    return DataPoint(
        id=id,
        created_at_ms=created_at_ms,
        raw_text=text,
        source="deepgram",
        transcript_chunk=ChunkRef(start_time_ms=start_ms, end_time_ms=end_ms, source="deepgram"),
    )


@pytest.fixture
def live_model(test_settings: Settings, clock: FakeClock) -> LiveModel:
    """Live model with the keyword interpreter and no embeddings."""
    return LiveModel("ws-1", settings=test_settings, interpreter=interpret_utterance, clock=clock)


@pytest.fixture
def sample_utterances() -> list[str]:
    """Sample workshop utterances."""
    return [
        "We need sign-off from compliance before shipping.",
        "I would love a future where customers get answers in minutes.",
        "Our legacy system is a bottleneck for the operations team.",
        "Imagine a platform that helps staff work with data directly.",
        "We cannot launch without regulatory approval.",
    ]


def workshop_transport(
    routes: dict[tuple[str, str], tuple[int, Any]],
    requests: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    """httpx transport answering from a `(method, path) -> (status, json)` table."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        status, body = routes.get((request.method, request.url.path), (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def app(test_settings: Settings):
    """Create test FastAPI application."""

    def override_settings():
        return test_settings

    get_settings.cache_clear()
    application = create_app()
    application.dependency_overrides[get_settings] = override_settings
    return application


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create test client for synchronous tests."""
    with TestClient(app) as c:
        yield c
