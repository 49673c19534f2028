"""
Error taxonomy for the capture and semantic pipeline.

Only DeviceError and SnapshotLoadInvalid are meant to reach the operator;
everything else is handled (logged, dropped or circuit-broken) inside the
pipeline.
"""


class LiveInsightError(Exception):
    """Base class for all pipeline errors."""


class ConsentRequired(LiveInsightError):
    """Capture was started without the participant consent flag."""

    def __init__(self, message: str = "Consent is required to start the live session") -> None:
        super().__init__(message)


class PermissionRequired(LiveInsightError):
    """The microphone permission check has not succeeded."""

    def __init__(self, message: str = "Run the microphone check before joining") -> None:
        super().__init__(message)


class DeviceError(LiveInsightError):
    """Unrecoverable audio device failure. Capture needs a manual restart."""


class ProviderError(LiveInsightError):
    """A transcription provider call failed."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class ProviderAuthError(ProviderError):
    """A provider rejected our credentials. Trips the session circuit breaker."""


class TranscriptionUnavailable(LiveInsightError):
    """Every provider failed or returned nothing for a chunk. The chunk is dropped."""

    def __init__(self, reasons: dict[str, str]) -> None:
        detail = "; ".join(f"{name}: {reason}" for name, reason in reasons.items())
        super().__init__(f"Transcription failed ({detail})")
        self.reasons = reasons


class IngestionForwardFailed(LiveInsightError):
    """Forwarding a transcript chunk to the workshop server failed."""


class SnapshotLoadInvalid(LiveInsightError):
    """A snapshot payload could not be decoded."""


class SessionNotFound(LiveInsightError):
    """No live session is registered under the given id."""
