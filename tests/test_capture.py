"""
Tests for the capture supervisor: segment clock, ingestion queue,
watchdog and chunk processing.
"""

import asyncio

import pytest
from conftest import FakeClock, FakeProvider, make_data_point

from live_insight.core.capture import CapturePipeline
from live_insight.core.clock import SegmentClock
from live_insight.core.ingestion_queue import IngestionQueue, QueuedSegment
from live_insight.core.model import LiveModel
from live_insight.core.reconciler import RealtimeReconciler, pending_key
from live_insight.errors import (
    ConsentRequired,
    DeviceError,
    IngestionForwardFailed,
    PermissionRequired,
    ProviderAuthError,
)
from live_insight.models.domain import CaptureState, DialoguePhase, TranscriptSource
from live_insight.services.devices import MicrophoneCheck, WebSocketAudioDevice
from live_insight.services.transcription import ProviderResult, TranscriptionFallbackChain

AUDIO = b"\x1a\x45\xdf\xa3" + b"\x00" * 2000


class RecordingForwarder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple] = []

    async def __call__(self, session_id, chunk, phase) -> None:
        if self.fail:
            raise IngestionForwardFailed("ingestion returned 500")
        self.calls.append((session_id, chunk, phase))


class StubWakeLock:
    def __init__(self, ok: bool) -> None:
        self.ok = ok
        self.released = False

    async def acquire(self) -> bool:
        return self.ok

    def release(self) -> None:
        self.released = True


def build_pipeline(
    settings,
    clock: FakeClock,
    primary: FakeProvider | None = None,
    secondary: FakeProvider | None = None,
    forwarder: RecordingForwarder | None = None,
    mic_ok: bool = True,
    **kwargs,
) -> CapturePipeline:
    microphone = MicrophoneCheck()
    microphone.record(mic_ok)
    chain = TranscriptionFallbackChain(
        primary or FakeProvider(TranscriptSource.DEEPGRAM, [ProviderResult(text="Hello there.", confidence=0.9)]),
        secondary or FakeProvider(TranscriptSource.WHISPER, [ProviderResult(text="Hello there.")]),
    )
    return CapturePipeline(
        session_id="ws-1",
        device=kwargs.pop("device", WebSocketAudioDevice()),
        chain=chain,
        forwarder=forwarder or RecordingForwarder(),
        permission=microphone,
        settings=settings,
        clock=clock,
        **kwargs,
    )


class TestSegmentClock:
    """Chunk window accounting."""

    def test_first_window_starts_at_zero(self, clock):
        """The first window spans capture start to now."""
        seg = SegmentClock(chunk_ms=10_000, clock=clock)
        seg.begin()

        window = seg.window(clock.advance(10_000))

        assert (window.start_ms, window.end_ms) == (0, 10_000)

    def test_windows_never_overlap(self, clock):
        """Each start is at or after the previous end, whatever the tick jitter."""
        seg = SegmentClock(chunk_ms=10_000, clock=clock)
        seg.begin()

        windows = [seg.window(clock.advance(step)) for step in (9_400, 10_700, 15_000, 300, 10_000)]

        for prev, cur in zip(windows, windows[1:]):
            assert cur.start_ms >= prev.end_ms
            assert cur.end_ms >= cur.start_ms
        assert all(w.start_ms >= 0 for w in windows)

    def test_long_pause_leaves_a_bounded_gap(self, clock):
        """After a stall the window covers at most one chunk duration."""
        seg = SegmentClock(chunk_ms=10_000, clock=clock)
        seg.begin()
        seg.window(clock.advance(10_000))

        window = seg.window(clock.advance(25_000))

        assert (window.start_ms, window.end_ms) == (25_000, 35_000)

    def test_generation_guard(self):
        seg = SegmentClock()
        first = seg.next_generation()
        second = seg.next_generation()

        assert second == first + 1
        assert not seg.is_current(first)
        assert seg.is_current(second)


class TestIngestionQueue:
    """Single-consumer drain."""

    @pytest.mark.asyncio
    async def test_fifo_without_overlap(self):
        """Segments are processed in arrival order, one at a time."""
        processed: list[int] = []
        active = 0
        max_active = 0

        async def processor(segment: QueuedSegment) -> None:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.001)
            processed.append(segment.start_ms)
            active -= 1

        queue = IngestionQueue(processor)
        for i in range(5):
            queue.enqueue(QueuedSegment(AUDIO, "audio/webm", i * 10, i * 10 + 10, 1))
        await queue.join()

        assert processed == [0, 10, 20, 30, 40]
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_stall_queue(self):
        """A processor error is logged and the next item still runs."""
        seen: list[int] = []

        async def processor(segment: QueuedSegment) -> None:
            if segment.start_ms == 0:
                raise RuntimeError("bad chunk")
            seen.append(segment.start_ms)

        queue = IngestionQueue(processor)
        queue.enqueue(QueuedSegment(AUDIO, "audio/webm", 0, 10, 1))
        queue.enqueue(QueuedSegment(AUDIO, "audio/webm", 10, 20, 1))
        await queue.join()

        assert seen == [10]
        assert queue.processed == 2

    @pytest.mark.asyncio
    async def test_stop_drops_pending(self):
        """Items queued before stop are never processed; enqueue after stop is ignored."""
        started = asyncio.Event()
        seen: list[int] = []

        async def processor(segment: QueuedSegment) -> None:
            started.set()
            await asyncio.sleep(10)
            seen.append(segment.start_ms)

        queue = IngestionQueue(processor)
        queue.enqueue(QueuedSegment(AUDIO, "audio/webm", 0, 10, 1))
        queue.enqueue(QueuedSegment(AUDIO, "audio/webm", 10, 20, 1))
        await started.wait()
        queue.stop()
        queue.enqueue(QueuedSegment(AUDIO, "audio/webm", 20, 30, 1))

        assert len(queue) == 0
        assert not queue.draining
        assert seen == []


class TestCaptureLifecycle:
    """Start/stop guards."""

    @pytest.mark.asyncio
    async def test_start_requires_consent(self, test_settings, clock):
        pipeline = build_pipeline(test_settings, clock)

        with pytest.raises(ConsentRequired):
            await pipeline.start(consent=False)
        assert pipeline.state is CaptureState.IDLE

    @pytest.mark.asyncio
    async def test_start_requires_microphone_check(self, test_settings, clock):
        """A failed permission check prompts the client and refuses to start."""
        prompts: list[bool] = []
        pipeline = build_pipeline(
            test_settings, clock, mic_ok=False, on_permission_prompt=lambda: prompts.append(True)
        )

        with pytest.raises(PermissionRequired):
            await pipeline.start(consent=True)
        assert prompts == [True]
        assert pipeline.state is CaptureState.IDLE

    @pytest.mark.asyncio
    async def test_device_failure_enters_error_state(self, test_settings, clock):
        device = WebSocketAudioDevice()
        device.fail("NotReadableError")
        pipeline = build_pipeline(test_settings, clock, device=device)

        with pytest.raises(DeviceError):
            await pipeline.start(consent=True)
        assert pipeline.state is CaptureState.ERROR

        # error is left only by building a new pipeline
        with pytest.raises(DeviceError):
            await pipeline.start(consent=True)

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, test_settings, clock):
        """Stop twice leaves the pipeline stopped with nothing running."""
        wake_lock = StubWakeLock(ok=True)
        pipeline = build_pipeline(test_settings, clock, wake_lock=wake_lock)
        await pipeline.start(consent=True)
        assert pipeline.capturing
        assert pipeline.generation == 1

        pipeline.stop()
        pipeline.stop()

        assert pipeline.state is CaptureState.STOPPED
        assert not pipeline.queue.draining
        assert wake_lock.released
        assert not pipeline.device.is_open

    @pytest.mark.asyncio
    async def test_wake_lock_unavailable_is_traced(self, test_settings, clock):
        pipeline = build_pipeline(test_settings, clock, wake_lock=StubWakeLock(ok=False))
        await pipeline.start(consent=True)
        try:
            assert "Wake lock unavailable" in pipeline.debug_trace
            assert pipeline.capturing
        finally:
            pipeline.stop()

    @pytest.mark.asyncio
    async def test_restart_reschedules_cancelled_embeddings(self, test_settings, clock):
        gate = asyncio.Event()

        async def held_embedder(text: str) -> list[float]:
            await gate.wait()
            return [0.0, 1.0, 0.0]

        model = LiveModel("ws-1", settings=test_settings, embed=held_embedder, clock=clock)
        pipeline = build_pipeline(test_settings, clock, reconciler=RealtimeReconciler(model))
        await pipeline.start(consent=True)
        model.add_data_point(make_data_point("dp-1", "Staff need training."))
        await asyncio.sleep(0)
        pipeline.stop()
        for _ in range(3):
            await asyncio.sleep(0)

        gate.set()
        await pipeline.start(consent=True)
        try:
            await model.wait_enrichment()
        finally:
            pipeline.stop()

        assert "dp-1" in model.themes.assignments


class TestWatchdog:
    """Liveness supervision."""

    @pytest.mark.asyncio
    async def test_chunk_stall_forces_one_restart(self, test_settings, clock):
        """No chunk for 26 s: one restart, generation +1, counters reset."""
        pipeline = build_pipeline(test_settings, clock)
        await pipeline.start(consent=True)
        try:
            generation = pipeline.generation
            now = clock.advance(26_000)

            assert pipeline.watchdog_tick() is True
            assert pipeline.restart_count == 1
            assert pipeline.generation == generation + 1
            assert pipeline.last_chunk_at == now
            assert pipeline.last_healthy_at == now

            assert pipeline.watchdog_tick() is False
            assert pipeline.restart_count == 1
        finally:
            pipeline.stop()

    @pytest.mark.asyncio
    async def test_health_stall_forces_restart(self, test_settings, clock):
        """Chunks keep coming but nothing was forwarded for 71 s."""
        pipeline = build_pipeline(test_settings, clock)
        await pipeline.start(consent=True)
        try:
            for _ in range(7):
                clock.advance(10_000)
                pipeline.last_chunk_at = clock()
                assert pipeline.watchdog_tick() is False
            clock.advance(1_000)
            pipeline.last_chunk_at = clock()

            assert pipeline.watchdog_tick() is True
            assert pipeline.restart_count == 1
        finally:
            pipeline.stop()

    def test_idle_pipeline_is_not_supervised(self, test_settings, clock):
        pipeline = build_pipeline(test_settings, clock)
        clock.advance(100_000)

        assert pipeline.watchdog_tick() is False


class TestSegmentProcessing:
    """Recorder callbacks through transcription and forwarding."""

    @pytest.mark.asyncio
    async def test_chunk_is_transcribed_and_forwarded(self, test_settings, clock, live_model):
        forwarder = RecordingForwarder()
        reconciler = RealtimeReconciler(live_model)
        pipeline = build_pipeline(test_settings, clock, forwarder=forwarder, reconciler=reconciler)
        await pipeline.start(consent=True)
        pipeline.dialogue_phase = DialoguePhase.CONSTRAINTS
        try:
            clock.advance(10_000)
            assert pipeline.on_segment(pipeline.generation, AUDIO, "audio/webm") is True
            await pipeline.queue.join()
        finally:
            pipeline.stop()

        assert len(forwarder.calls) == 1
        session_id, chunk, phase = forwarder.calls[0]
        assert session_id == "ws-1"
        assert (chunk.start_time_ms, chunk.end_time_ms) == (0, 10_000)
        assert chunk.source is TranscriptSource.DEEPGRAM
        assert phase is DialoguePhase.CONSTRAINTS
        assert pipeline.forwarded_count == 1
        key = pending_key(0, 10_000, "deepgram", "Hello there.")
        assert reconciler.pending_phases[key] is DialoguePhase.CONSTRAINTS

    @pytest.mark.asyncio
    async def test_stale_generation_is_ignored(self, test_settings, clock):
        """A callback from a replaced recorder never enqueues."""
        pipeline = build_pipeline(test_settings, clock)
        await pipeline.start(consent=True)
        try:
            old = pipeline.generation
            pipeline.restart_recorder("manual")

            assert pipeline.on_segment(old, AUDIO, "audio/webm") is False
            assert len(pipeline.queue) == 0
        finally:
            pipeline.stop()

    @pytest.mark.asyncio
    async def test_tiny_chunk_is_ignored(self, test_settings, clock):
        """Chunks under the size floor do not count as produced."""
        pipeline = build_pipeline(test_settings, clock)
        await pipeline.start(consent=True)
        try:
            before = pipeline.last_chunk_at
            clock.advance(10_000)

            assert pipeline.on_segment(pipeline.generation, b"\x00" * 10, "audio/webm") is False
            assert pipeline.last_chunk_at == before
        finally:
            pipeline.stop()

    def test_segment_after_stop_is_ignored(self, test_settings, clock):
        pipeline = build_pipeline(test_settings, clock)

        assert pipeline.on_segment(pipeline.generation, AUDIO, "audio/webm") is False

    @pytest.mark.asyncio
    async def test_failed_transcription_drops_chunk(self, test_settings, clock):
        forwarder = RecordingForwarder()
        pipeline = build_pipeline(
            test_settings,
            clock,
            primary=FakeProvider(TranscriptSource.DEEPGRAM, [ProviderResult(text="")]),
            secondary=FakeProvider(
                TranscriptSource.WHISPER, [ProviderAuthError("whisper", "credentials rejected", 401)]
            ),
            forwarder=forwarder,
        )
        await pipeline.start(consent=True)
        try:
            clock.advance(10_000)
            pipeline.on_segment(pipeline.generation, AUDIO, "audio/webm")
            await pipeline.queue.join()
        finally:
            pipeline.stop()

        assert forwarder.calls == []
        assert pipeline.dropped_count == 1
        assert pipeline.status().secondary_disabled is True

    @pytest.mark.asyncio
    async def test_silence_is_not_a_drop(self, test_settings, clock):
        pipeline = build_pipeline(
            test_settings,
            clock,
            primary=FakeProvider(TranscriptSource.DEEPGRAM, [ProviderResult(text="", silent=True)]),
        )
        await pipeline.start(consent=True)
        try:
            clock.advance(10_000)
            pipeline.on_segment(pipeline.generation, AUDIO, "audio/webm")
            await pipeline.queue.join()
        finally:
            pipeline.stop()

        assert pipeline.dropped_count == 0
        assert pipeline.forwarded_count == 0
        assert pipeline.chain.secondary.calls == 0

    @pytest.mark.asyncio
    async def test_forward_failure_is_contained(self, test_settings, clock):
        """A failed forward is logged; the pipeline keeps capturing."""
        pipeline = build_pipeline(test_settings, clock, forwarder=RecordingForwarder(fail=True))
        await pipeline.start(consent=True)
        try:
            clock.advance(10_000)
            pipeline.on_segment(pipeline.generation, AUDIO, "audio/webm")
            await pipeline.queue.join()

            assert pipeline.capturing
            assert pipeline.forwarded_count == 0
            # transcription succeeded, so health was still refreshed
            assert pipeline.last_healthy_at == clock()
        finally:
            pipeline.stop()

    @pytest.mark.asyncio
    async def test_restart_resets_secondary_breaker(self, test_settings, clock):
        """A new capture run gets a fresh fallback provider."""
        pipeline = build_pipeline(test_settings, clock)
        pipeline.chain.secondary_disabled = True

        await pipeline.start(consent=True)
        pipeline.stop()

        assert pipeline.chain.secondary_disabled is False
