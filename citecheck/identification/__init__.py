"""Tier 1: citation identification, format checks and paragraph reconciliation."""

from citecheck.identification.comparison import IdentifierComparison, compare_identifiers
from citecheck.identification.context import extract_context, extract_contexts
from citecheck.identification.eyecite_identifier import EyeciteIdentifier
from citecheck.identification.format_checker import check_format
from citecheck.identification.patterns import CitationIdentifier
from citecheck.identification.reconciler import ParagraphReconciler
from citecheck.identification.schemas import (
    Citation,
    CitationDocument,
    CitationType,
    Paragraph,
    ReconciliationResult,
)

__all__ = [
    "Citation",
    "CitationDocument",
    "CitationIdentifier",
    "CitationType",
    "EyeciteIdentifier",
    "IdentifierComparison",
    "Paragraph",
    "ParagraphReconciler",
    "ReconciliationResult",
    "check_format",
    "compare_identifiers",
    "extract_context",
    "extract_contexts",
]
