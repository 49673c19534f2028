"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with type validation
and sensible defaults for development. Every tunable constant of the
capture and semantic pipeline lives here rather than in the modules.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================
    app_name: str = Field(default="live-insight-engine", description="Application name")
    app_env: Literal["development", "staging", "production"] = Field(
        default="development", description="Application environment"
    )
    debug: bool = Field(default=True, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    # =========================================================================
    # API Keys
    # =========================================================================
    deepgram_api_key: SecretStr = Field(
        default=SecretStr(""), description="Deepgram API key (primary transcription)"
    )
    openai_api_key: SecretStr = Field(
        default=SecretStr(""), description="OpenAI API key (Whisper fallback, embeddings)"
    )

    # =========================================================================
    # Upstream Workshop Server
    # =========================================================================
    workshop_api_url: str = Field(
        default="http://localhost:3000/api", description="Base URL of the workshop server"
    )
    workshop_api_timeout_s: float = Field(
        default=30.0, gt=0, description="HTTP timeout for workshop server calls"
    )
    feed_reconnect_delay_s: float = Field(
        default=3.0, ge=0, description="Delay before re-opening a dropped event feed"
    )

    # =========================================================================
    # Capture Configuration
    # =========================================================================
    segment_interval_ms: int = Field(
        default=10_000, ge=1000, description="Segment clock interval (chunk duration)"
    )
    min_chunk_bytes: int = Field(
        default=1000, ge=0, description="Chunks smaller than this are discarded"
    )
    watchdog_interval_ms: int = Field(
        default=10_000, ge=500, description="Watchdog tick interval"
    )
    chunk_stall_ms: int = Field(
        default=25_000, ge=1000, description="No chunk produced for this long forces a restart"
    )
    health_stall_ms: int = Field(
        default=70_000, ge=1000, description="No successful forward for this long forces a restart"
    )
    debug_trace_size: int = Field(
        default=200, ge=10, description="Bounded size of the per-session debug trace"
    )
    pending_phase_cap: int = Field(
        default=500, ge=1, description="Max remembered dialogue phases for in-flight chunks"
    )

    # =========================================================================
    # Transcription Configuration
    # =========================================================================
    stt_model: str = Field(default="nova-2", description="Deepgram model")
    stt_language: str = Field(default="en", description="Speech recognition language")
    stt_punctuate: bool = Field(default=True, description="Enable auto-punctuation")
    stt_smart_format: bool = Field(default=True, description="Enable smart formatting")
    whisper_model: str = Field(default="whisper-1", description="OpenAI transcription model")

    # =========================================================================
    # Embedding Configuration
    # =========================================================================
    embedding_provider: Literal["workshop", "openai"] = Field(
        default="workshop",
        description="Embed through the workshop server endpoint or call OpenAI directly",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    embedding_max_chars: int = Field(
        default=2500, ge=100, description="Text is truncated to this length before embedding"
    )

    # =========================================================================
    # Semantic Engine Configuration
    # =========================================================================
    similarity_threshold: float = Field(
        default=0.78, ge=0.0, le=1.0, description="Cosine similarity to join an existing theme"
    )
    theme_label_words: int = Field(default=7, ge=1, description="Words used for theme labels")
    theme_support_cap: int = Field(
        default=50, ge=1, description="Supporting utterance ids kept per theme"
    )
    recency_tau_ms: int = Field(
        default=12 * 60 * 1000, ge=1, description="Recency decay constant for synthesis"
    )
    synthesis_min_strength: int = Field(
        default=2, ge=1, description="Minimum theme strength to appear in synthesis"
    )
    synthesis_top_k: int = Field(default=3, ge=1, description="Items kept per bucket per domain")
    pressure_point_limit: int = Field(default=5, ge=1, description="Pressure points returned")
    edge_visible_min_count: int = Field(
        default=3, ge=1, description="Minimum edge count before a dependency line is drawn"
    )
    edge_decay_ms: int = Field(
        default=6 * 60 * 1000, ge=1, description="Dependency line fades out over this window"
    )

    # =========================================================================
    # Reveal Gate Configuration
    # =========================================================================
    reveal_min_confident: int = Field(default=10, ge=1, description="Confident utterances needed")
    reveal_min_dependency_processed: int = Field(
        default=12, ge=1, description="Utterances processed for dependencies needed"
    )
    reveal_min_synthesis_items: int = Field(default=4, ge=1, description="Synthesis items needed")
    reveal_min_narrative_chars: int = Field(
        default=40, ge=1, description="Minimum narrative length"
    )
    reveal_latch: bool = Field(
        default=True, description="Keep the reveal open once it has been reached"
    )

    # =========================================================================
    # Observability
    # =========================================================================
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    # =========================================================================
    # CORS Configuration
    # =========================================================================
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
