"""
Application Configuration.

Pydantic settings for type-safe environment configuration.
Supports swappable LLM backends (OpenAI, Ollama) with a separate model per
validation tier.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMBackend(str, Enum):
    """Supported LLM backends."""

    OPENAI = "openai"
    OLLAMA = "ollama"


class PanelMode(str, Enum):
    """Output format requested from Tier-2 panel agents."""

    SCORE = "score"      # SCORE: 0-10 with reasoning
    VERDICT = "verdict"  # Legacy VALID / INVALID / UNCERTAIN labels


class IdentifierBackend(str, Enum):
    """Tier-1 citation identifier."""

    REGEX = "regex"      # Hand-written federal citation patterns
    EYECITE = "eyecite"  # eyecite for cases, patterns for codes and rules


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === LLM Backend Selection ===
    llm_backend: LLMBackend = Field(
        default=LLMBackend.OPENAI,
        description="LLM backend to use: 'openai' or 'ollama'",
    )

    # === OpenAI Configuration ===
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (required if llm_backend='openai')",
    )
    openai_tier2_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used by the Tier-2 panel",
    )
    openai_tier3_model: str = Field(
        default="gpt-4o",
        description="OpenAI model used by the Tier-3 investigation panel",
    )

    # === Ollama Configuration ===
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama API base URL",
    )
    ollama_tier2_model: str = Field(
        default="llama3",
        description="Ollama model used by the Tier-2 panel",
    )
    ollama_tier3_model: str = Field(
        default="llama3",
        description="Ollama model used by the Tier-3 investigation panel",
    )
    ollama_request_timeout: float = Field(
        default=120.0,
        description="Request timeout for Ollama in seconds",
    )

    # === Identification ===
    identifier_backend: IdentifierBackend = Field(
        default=IdentifierBackend.REGEX,
        description="Citation identifier: 'regex' or 'eyecite'",
    )

    # === Panel & Consensus ===
    panel_mode: PanelMode = Field(
        default=PanelMode.SCORE,
        description="Tier-2 agent output format: 'score' or legacy 'verdict'",
    )
    tier2_min_quorum: int = Field(
        default=3,
        ge=1,
        description="Minimum successful Tier-2 agents needed to compute consensus",
    )
    tier3_min_quorum: int = Field(
        default=2,
        ge=1,
        description="Minimum successful Tier-3 agents needed for a final risk level",
    )
    dispersion_threshold: float = Field(
        default=2.0,
        ge=0.0,
        description="Tier-2 standard deviation above which Tier 3 is triggered",
    )

    # === Agent Calls ===
    validation_concurrency: int = Field(
        default=5,
        ge=1,
        description="Maximum citations evaluated concurrently by a validation job",
    )
    agent_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single agent call (including retries)",
    )
    agent_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per agent call on transient errors",
    )

    # === Case-Link Lookup (Tier 3 evidence) ===
    case_lookup_enabled: bool = Field(
        default=True,
        description="Look up case citations in CourtListener during Tier 3",
    )
    courtlistener_api_url: str = Field(
        default="https://www.courtlistener.com/api/rest/v4/citation-lookup/",
        description="CourtListener citation lookup endpoint",
    )
    courtlistener_api_token: str = Field(
        default="",
        description="CourtListener API token (lookups are skipped when empty)",
    )

    # === Data Directories ===
    snapshot_dir: Path = Field(
        default=Path("./data/snapshots"),
        description="Directory for document snapshot persistence",
    )

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # === API Configuration ===
    api_host: str = Field(
        default="0.0.0.0",
        description="API host to bind to",
    )
    api_port: int = Field(
        default=8000,
        description="API port to bind to",
    )

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.snapshot_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.ensure_directories()
    return settings
