"""
Tests for log scrubbing and context binding.
"""

import structlog

from live_insight.utils.logging import LogContext, scrub_event


class TestScrubbing:
    def test_audio_and_keys_are_replaced(self):
        event = scrub_event(None, "info", {"event": "x", "audio": b"\x00" * 12, "api_key": "sk-1"})

        assert event["audio"] == "<scrubbed 12>"
        assert event["api_key"] == "<scrubbed 4>"
        assert event["event"] == "x"


class TestLogContext:
    def test_nested_contexts_restore_outer_values(self):
        structlog.contextvars.clear_contextvars()

        with LogContext(session_id="ws-1", generation=1):
            with LogContext(generation=2):
                assert structlog.contextvars.get_contextvars()["generation"] == 2
            assert structlog.contextvars.get_contextvars() == {"session_id": "ws-1", "generation": 1}

        assert structlog.contextvars.get_contextvars() == {}
