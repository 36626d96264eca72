"""
Citation Checker - FastAPI Application.

Provides REST API endpoints for document checks, citation identification,
tiered validation jobs, paragraph edits and single-citation reprocessing.
The ASGI application lives in ``app.main``.
"""

from app.config import IdentifierBackend, LLMBackend, PanelMode, Settings, get_settings

__all__ = [
    "get_settings",
    "Settings",
    "LLMBackend",
    "PanelMode",
    "IdentifierBackend",
]
