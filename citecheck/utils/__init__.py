"""
Utility modules for the citation checker.

Provides the per-tier LLM factory and logging utilities.
"""

from citecheck.utils.llm_factory import (
    LLMFactoryError,
    ValidationTier,
    get_llm,
    model_name_for,
)
from citecheck.utils.logger import (
    LogContext,
    get_logger,
    setup_logging,
)

__all__ = [
    # LLM Factory
    "get_llm",
    "model_name_for",
    "ValidationTier",
    "LLMFactoryError",
    # Logging
    "get_logger",
    "setup_logging",
    "LogContext",
]
