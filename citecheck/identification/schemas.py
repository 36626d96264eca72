"""
Pydantic Schemas for the Identification Layer.

Structured document, paragraphs and citations. A paragraph's text carries
positional markers ``[CITATION:cit_001]...[/CITATION:cit_001]`` around each
identified citation; a citation's offsets always refer to the marker-free
paragraph text.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from citecheck.validation.schemas import (
    Tier2Result,
    Tier3Result,
    ValidationStage,
    utcnow,
)

CITATION_ID_PATTERN = re.compile(r"^cit_(\d{3,})$")


def format_citation_id(number: int) -> str:
    """Render a citation number as ``cit_NNN``."""
    return f"cit_{number:03d}"


def citation_number(citation_id: str) -> int | None:
    """Numeric part of a ``cit_NNN`` identifier, or None when not in that form."""
    match = CITATION_ID_PATTERN.match(citation_id)
    return int(match.group(1)) if match else None


class CitationType(str, Enum):
    """Kinds of legal authority the identifier recognises."""

    CASE = "case"
    STATUTE = "statute"
    REGULATION = "regulation"
    RULE = "rule"
    UNKNOWN = "unknown"


class FormatStatus(str, Enum):
    """Tier-1 format check outcome."""

    VALID_FORMAT = "VALID_FORMAT"
    INVALID_FORMAT = "INVALID_FORMAT"
    AMBIGUOUS_FORMAT = "AMBIGUOUS_FORMAT"


class Tier1Result(BaseModel):
    """Deterministic format check against known reporters, codes and rules."""

    format_status: FormatStatus
    confidence: float = Field(..., ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=utcnow)


class ManualReviewStatus(str, Enum):
    """Reviewer override for a citation."""

    APPROVED = "approved"
    QUESTIONABLE = "questionable"


class ManualReview(BaseModel):
    """Out-of-band human decision; outranks both validation tiers."""

    status: ManualReviewStatus
    reviewed_at: datetime = Field(default_factory=utcnow)
    reviewed_by: str | None = Field(default=None)
    notes: str | None = Field(default=None)


class DetectedCitation(BaseModel):
    """Raw identifier match before an ID is attached."""

    text: str = Field(..., description="Matched citation text")
    citation_type: CitationType
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    components: dict[str, str] = Field(default_factory=dict)


class Citation(BaseModel):
    """
    A legal citation identified in a document.

    Tier-2 and Tier-3 records nest inside the citation so they can never
    outlive or detach from it.
    """

    id: str = Field(..., pattern=r"^cit_\d{3,}$", description="Stable citation ID")
    citation_text: str = Field(..., min_length=1)
    citation_type: CitationType = Field(default=CitationType.UNKNOWN)
    paragraph_id: str = Field(..., description="Containing paragraph")
    start: int = Field(default=0, ge=0, description="Offset in marker-free text")
    end: int = Field(default=0, ge=0)
    components: dict[str, str] = Field(default_factory=dict)

    tier_1: Tier1Result | None = Field(default=None)
    stage: ValidationStage = Field(default=ValidationStage.UNVALIDATED)
    validation: Tier2Result | None = Field(default=None)
    tier_3: Tier3Result | None = Field(default=None)
    validation_error: str | None = Field(default=None, description="Why Tier 2 could not run")
    tier_3_error: str | None = Field(default=None, description="Why Tier 3 could not run")
    manual_review: ManualReview | None = Field(default=None)

    @property
    def number(self) -> int:
        return citation_number(self.id) or 0

    @property
    def is_validated(self) -> bool:
        return self.validation is not None


class Paragraph(BaseModel):
    """A paragraph of document text, citations wrapped in markers."""

    id: str = Field(..., min_length=1)
    text: str = Field(default="")
    section: str | None = Field(default=None)


class CitationDocument(BaseModel):
    """Structured document: metadata, ordered paragraphs and citations."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    content: list[Paragraph] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)

    def paragraph(self, paragraph_id: str) -> Paragraph | None:
        for paragraph in self.content:
            if paragraph.id == paragraph_id:
                return paragraph
        return None

    def paragraph_index(self, paragraph_id: str) -> int | None:
        for index, paragraph in enumerate(self.content):
            if paragraph.id == paragraph_id:
                return index
        return None

    def citation(self, citation_id: str) -> Citation | None:
        for citation in self.citations:
            if citation.id == citation_id:
                return citation
        return None

    def citations_in(self, paragraph_id: str) -> list[Citation]:
        return [c for c in self.citations if c.paragraph_id == paragraph_id]

    def max_citation_number(self) -> int:
        """Highest ``cit_NNN`` number present in citations or paragraph markers."""
        numbers = [c.number for c in self.citations]
        for paragraph in self.content:
            numbers.extend(int(n) for n in re.findall(r"\[CITATION:cit_(\d+)\]", paragraph.text))
        return max(numbers, default=0)


class ReconciliationResult(BaseModel):
    """Outcome of reconciling one paragraph's citations against new text."""

    paragraph: Paragraph
    citations: list[Citation] = Field(
        default_factory=list, description="Paragraph citations in text order"
    )
    new_citations: list[Citation] = Field(default_factory=list)
    removed_citation_ids: list[str] = Field(default_factory=list)
    retained_citation_ids: list[str] = Field(default_factory=list)
    next_counter: int = Field(..., ge=1)
    changed: bool = Field(default=True)
