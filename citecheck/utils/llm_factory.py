"""
LLM Factory - Backend Abstraction for Validation Panels.

Provides a unified interface for LLM backends (OpenAI, Ollama).
Each validation tier gets its own model so the Tier-3 investigation panel
can run on a stronger model than the Tier-2 screening panel.
"""

from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING

from llama_index.core.llms import LLM

from app.config import LLMBackend, get_settings
from citecheck.utils.logger import get_logger

if TYPE_CHECKING:
    from app.config import Settings

logger = get_logger(__name__)


class LLMFactoryError(Exception):
    """Raised when LLM factory encounters an error."""

    pass


class ValidationTier(str, Enum):
    """Validation tiers that own a panel of agents."""

    TIER_2 = "tier2"
    TIER_3 = "tier3"


def model_name_for(tier: ValidationTier, settings: "Settings | None" = None) -> str:
    """Resolve the configured model name for a tier on the active backend."""
    settings = settings or get_settings()

    if settings.llm_backend == LLMBackend.OPENAI:
        return (
            settings.openai_tier2_model
            if tier == ValidationTier.TIER_2
            else settings.openai_tier3_model
        )
    return (
        settings.ollama_tier2_model
        if tier == ValidationTier.TIER_2
        else settings.ollama_tier3_model
    )


def _create_openai_llm(settings: "Settings", model: str) -> LLM:
    """Create OpenAI LLM instance."""
    try:
        from llama_index.llms.openai import OpenAI
    except ImportError as e:
        raise LLMFactoryError(
            "OpenAI LLM not installed. Run: pip install llama-index-llms-openai"
        ) from e

    if not settings.openai_api_key:
        raise LLMFactoryError(
            "OPENAI_API_KEY not set. Required when llm_backend='openai'"
        )

    logger.info(f"Initializing OpenAI LLM with model: {model}")
    return OpenAI(
        model=model,
        api_key=settings.openai_api_key,
        temperature=0.0,
        max_retries=0,
    )


def _create_ollama_llm(settings: "Settings", model: str) -> LLM:
    """Create Ollama LLM instance for local inference."""
    try:
        from llama_index.llms.ollama import Ollama
    except ImportError as e:
        raise LLMFactoryError(
            "Ollama LLM not installed. Run: pip install llama-index-llms-ollama"
        ) from e

    logger.info(
        f"Initializing Ollama LLM with model: {model} "
        f"at {settings.ollama_base_url}"
    )
    return Ollama(
        model=model,
        base_url=settings.ollama_base_url,
        request_timeout=settings.ollama_request_timeout,
        temperature=0.0,
    )


@lru_cache
def get_llm(tier: ValidationTier = ValidationTier.TIER_2) -> LLM:
    """
    Get configured LLM instance for a validation tier.

    Args:
        tier: Which panel the LLM serves

    Returns:
        LLM instance (OpenAI or Ollama)

    Raises:
        LLMFactoryError: If configuration is invalid or dependencies missing
    """
    settings = get_settings()
    model = model_name_for(tier, settings)

    match settings.llm_backend:
        case LLMBackend.OPENAI:
            return _create_openai_llm(settings, model)
        case LLMBackend.OLLAMA:
            return _create_ollama_llm(settings, model)
        case _:
            raise LLMFactoryError(f"Unsupported LLM backend: {settings.llm_backend}")
