"""
Pydantic Schemas for Document Snapshots.

A check is a lineage of immutable document snapshots. Every identify,
validate, edit or manual-review operation writes a new version; the highest
version of a lineage is current.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from citecheck.identification.schemas import CitationDocument
from citecheck.validation.schemas import utcnow


class SnapshotStatus(str, Enum):
    """How far a snapshot's document has been processed."""

    UPLOADED = "uploaded"
    CITATIONS_IDENTIFIED = "citations_identified"
    CITATIONS_VALIDATED = "citations_validated"


class DocumentSnapshot(BaseModel):
    """One immutable version of a structured document."""

    snapshot_id: str = Field(..., description="Check ID of this version")
    lineage_id: str = Field(..., description="Shared by all versions of a document")
    version: int = Field(..., ge=1)
    parent_id: str | None = Field(default=None, description="Snapshot this one derives from")
    status: SnapshotStatus = Field(default=SnapshotStatus.UPLOADED)
    created_at: datetime = Field(default_factory=utcnow)
    description: str | None = Field(default=None, description="What produced this version")
    document: CitationDocument = Field(default_factory=CitationDocument)
    citation_counter: int = Field(
        default=1, ge=1, description="Next citation number to mint in this lineage"
    )

    @property
    def is_validated(self) -> bool:
        citations = self.document.citations
        return bool(citations) and all(c.is_validated for c in citations)


class SnapshotSummary(BaseModel):
    """Version history entry."""

    snapshot_id: str
    version: int
    parent_id: str | None = None
    status: SnapshotStatus
    created_at: datetime
    description: str | None = None
    citation_count: int = 0
