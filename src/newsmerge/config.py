"""Configuration settings for newsmerge."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NEWSMERGE_",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./newsmerge.db"
    database_echo: bool = False

    # OpenAI-compatible LLM gateway used by the semantic resolver
    llm_base_url: str = "http://localhost:8000/v1"
    llm_api_key: str = "dummy-key"
    model_resolver: str = "gemini-2.5-flash"
    resolver_temperature: float = 0.1

    # Output-validation retries inside the agent (schema repair), not call retries
    resolver_output_retries: int = 2

    # Overall wall-clock budget for one resolver call; large payloads can take minutes
    resolver_timeout_seconds: float = 120.0

    # ── Relevance scoring ───────────────────────────────────────────────────
    # Only items ingested within this many days before the candidate are compared
    lookback_days: int = 30

    # Top-N candidates returned by the scorer (only the first is consulted)
    candidate_limit: int = 10

    # BM25 column weights: headline, summary, body
    weight_headline: float = 10.0
    weight_summary: float = 5.0
    weight_body: float = 1.0

    # ── Resolution thresholds (BM25, more negative = more similar) ──────────
    # Empirically calibrated; re-run `newsmerge calibrate` before changing.
    # score >= threshold_new        -> auto NEW
    # score <= threshold_duplicate  -> auto DUPLICATE
    # in between                    -> semantic resolver
    threshold_new: float = -80.0
    threshold_duplicate: float = -201.0
    threshold_version: str = "bm25-10-5-1/2025-10"

    # Merge a semantic duplicate's sources into the canonical item
    merge_sources_on_semantic_duplicate: bool = True

    # Logging
    log_level: str = "INFO"
    log_api_calls: bool = True

    @model_validator(mode="after")
    def _check_threshold_order(self) -> "Settings":
        if self.threshold_duplicate >= self.threshold_new:
            msg = (
                f"threshold_duplicate ({self.threshold_duplicate}) must be lower than "
                f"threshold_new ({self.threshold_new})"
            )
            raise ValueError(msg)
        if self.lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")
        return self


settings = Settings()
