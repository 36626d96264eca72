"""
Citation Check Service.

Route-level workflows over the snapshot store, the reconciler, the
single-citation validator and the job orchestrator. Every operation that
changes a document writes a new snapshot and returns it; nothing here
mutates a stored snapshot.
"""

import asyncio
from collections.abc import AsyncIterator

from pydantic import BaseModel, Field

from app.config import IdentifierBackend, Settings
from citecheck.errors import AlreadyValidatedError, NotFoundError, ValidationInputError
from citecheck.identification.comparison import IdentifierComparison, compare_identifiers
from citecheck.identification.context import extract_context
from citecheck.identification.eyecite_identifier import EyeciteIdentifier
from citecheck.identification.patterns import CitationIdentifier
from citecheck.identification.reconciler import ParagraphReconciler
from citecheck.identification.schemas import (
    Citation,
    CitationDocument,
    ManualReview,
    ManualReviewStatus,
    Paragraph,
)
from citecheck.storage.job_store import JobStore
from citecheck.storage.schemas import DocumentSnapshot, SnapshotStatus, SnapshotSummary
from citecheck.storage.snapshot_store import SnapshotStore
from citecheck.utils.logger import LogContext, get_logger
from citecheck.validation.orchestrator import JobOrchestrator
from citecheck.validation.pipeline import CitationValidator
from citecheck.validation.risk import RiskSummary, summarize_risk
from citecheck.validation.schemas import JobEvent, ValidationJob

logger = get_logger(__name__)


class EditResult(BaseModel):
    """Outcome of a paragraph edit."""

    paragraph: Paragraph
    new_citations: list[Citation] = Field(default_factory=list)
    removed_citations: list[str] = Field(default_factory=list)
    check_id: str = Field(..., description="Snapshot holding the edit")
    validation_error: str | None = Field(
        default=None, description="Set when validating new citations failed"
    )


def order_citations(document: CitationDocument, citations: list[Citation]) -> list[Citation]:
    """Sort citations by paragraph position, then by offset."""
    positions = {p.id: i for i, p in enumerate(document.content)}
    return sorted(
        citations,
        key=lambda c: (positions.get(c.paragraph_id, len(positions)), c.start, c.number),
    )


def snapshot_status(citations: list[Citation]) -> SnapshotStatus:
    if citations and all(c.is_validated for c in citations):
        return SnapshotStatus.CITATIONS_VALIDATED
    if citations:
        return SnapshotStatus.CITATIONS_IDENTIFIED
    return SnapshotStatus.UPLOADED


class CheckService:
    """
    Citation checking workflows for one process.

    Usage:
        service = CheckService.from_settings(get_settings())
        snapshot = await service.create_check(document)
        snapshot = await service.identify_citations(snapshot.snapshot_id)
        job = await service.start_validation(snapshot.snapshot_id)
    """

    def __init__(
        self,
        store: SnapshotStore,
        validator: CitationValidator,
        orchestrator: JobOrchestrator | None = None,
        reconciler: ParagraphReconciler | None = None,
        concurrency: int = 5,
    ) -> None:
        self.store = store
        self.validator = validator
        self.orchestrator = orchestrator or JobOrchestrator(
            store, validator, JobStore(), concurrency=concurrency
        )
        self.reconciler = reconciler or ParagraphReconciler()
        self.concurrency = concurrency

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        validator: CitationValidator | None = None,
        store: SnapshotStore | None = None,
    ) -> "CheckService":
        """Wire the default store, validator and orchestrator from settings."""
        settings.ensure_directories()
        return cls(
            store=store or SnapshotStore(persist_dir=settings.snapshot_dir),
            validator=validator or CitationValidator.from_settings(settings),
            reconciler=ParagraphReconciler.for_backend(settings.identifier_backend),
            concurrency=settings.validation_concurrency,
        )

    # ========================================================================
    # Checks
    # ========================================================================

    async def create_check(self, document: CitationDocument) -> DocumentSnapshot:
        """
        Store an uploaded structured document as version 1 of a new lineage.

        Raises:
            ValidationInputError: If the document has no paragraphs or
                repeats a paragraph ID
        """
        if not document.content:
            raise ValidationInputError("Document has no paragraphs")

        paragraph_ids = [p.id for p in document.content]
        if len(set(paragraph_ids)) != len(paragraph_ids):
            raise ValidationInputError("Paragraph IDs must be unique")

        citation_ids = [c.id for c in document.citations]
        if len(set(citation_ids)) != len(citation_ids):
            raise ValidationInputError("Citation IDs must be unique")

        return await self.store.create(document)

    async def get_check(self, check_id: str) -> DocumentSnapshot:
        return await self.store.get(check_id)

    async def versions(self, check_id: str) -> list[SnapshotSummary]:
        return await self.store.versions(check_id)

    async def identify_citations(
        self,
        check_id: str,
        backend: IdentifierBackend | None = None,
    ) -> DocumentSnapshot:
        """
        Run the identifier over every paragraph and write a new snapshot.

        Citations that are still present keep their IDs and validation
        history; new ones are minted from numbers reserved in the lineage.

        Args:
            check_id: Snapshot to identify
            backend: Identifier for this run (defaults to the configured one)
        """
        reconciler = (
            ParagraphReconciler.for_backend(backend) if backend is not None else self.reconciler
        )
        snapshot = await self.store.get(check_id)
        document = snapshot.document
        counter = snapshot.citation_counter

        content, citations, minted = self._refresh_paragraphs(reconciler, document, counter)
        if minted:
            first = await self.store.reserve_citation_ids(snapshot.lineage_id, minted)
            if first != counter:
                content, citations, _ = self._refresh_paragraphs(reconciler, document, first)
            counter = first + minted

        known = {p.id for p in document.content}
        orphans = [c.id for c in document.citations if c.paragraph_id not in known]
        if orphans:
            logger.warning(f"Dropping citations without a paragraph: {', '.join(orphans)}")

        updated = document.model_copy(update={"content": content, "citations": citations})
        logger.info(
            f"Identified {len(citations)} citations in {check_id} "
            f"({minted} new, {type(reconciler.identifier).__name__})"
        )

        return await self.store.save_new_version(
            snapshot,
            updated,
            status=snapshot_status(citations) if citations else SnapshotStatus.CITATIONS_IDENTIFIED,
            citation_counter=counter,
            description="Citations identified",
        )

    @staticmethod
    def _refresh_paragraphs(
        reconciler: ParagraphReconciler,
        document: CitationDocument,
        counter: int,
    ) -> tuple[list[Paragraph], list[Citation], int]:
        content: list[Paragraph] = []
        citations: list[Citation] = []
        minted = 0

        for paragraph in document.content:
            result = reconciler.refresh(paragraph, document.citations_in(paragraph.id), counter)
            content.append(result.paragraph)
            citations.extend(result.citations)
            minted += len(result.new_citations)
            counter = result.next_counter

        return content, citations, minted

    async def compare_identifiers(self, check_id: str) -> IdentifierComparison:
        """Compare the pattern and eyecite identifiers on a check's paragraphs."""
        snapshot = await self.store.get(check_id)
        comparison = compare_identifiers(
            snapshot.document, CitationIdentifier(), EyeciteIdentifier()
        )
        logger.info(
            f"Identifier comparison for {check_id}: {comparison.pattern_count} pattern, "
            f"{comparison.eyecite_count} eyecite, {comparison.overlap_count} shared"
        )
        return comparison

    # ========================================================================
    # Validation Jobs
    # ========================================================================

    async def start_validation(self, check_id: str, force: bool = False) -> ValidationJob:
        """
        Start a background validation job for a check.

        Raises:
            ValidationInputError: If the check has no citations
            AlreadyValidatedError: If every citation is validated and ``force`` is False
        """
        snapshot = await self.store.get(check_id)

        if not snapshot.document.citations:
            raise ValidationInputError(f"Check {check_id} has no citations to validate")
        if snapshot.is_validated and not force:
            raise AlreadyValidatedError(
                f"Check {check_id} is already validated; pass force=true to re-run"
            )

        return await self.orchestrator.start(snapshot, force=force)

    def get_job(self, job_id: str) -> ValidationJob:
        return self.orchestrator.get(job_id)

    def job_events(self, job_id: str) -> AsyncIterator[JobEvent]:
        # Raises NotFoundError before the stream starts.
        self.orchestrator.get(job_id)
        return self.orchestrator.events(job_id)

    # ========================================================================
    # Single Citation
    # ========================================================================

    async def revalidate_citation(
        self,
        check_id: str,
        citation_id: str,
        force_tier3: bool = False,
    ) -> tuple[Citation, DocumentSnapshot]:
        """
        Re-run Tier 2 (and Tier 3 when triggered or forced) for one citation.

        Every other citation is copied into the new snapshot untouched.

        Returns:
            The updated citation and the snapshot that holds it
        """
        snapshot = await self.store.get(check_id)
        citation = self._citation(snapshot, citation_id)

        with LogContext(logger, citation_id=citation_id):
            context = extract_context(snapshot.document, citation)
            updated = await self.validator.validate(citation, context, force_tier3=force_tier3)

        result = await self._replace_citation(snapshot, updated, f"Revalidated {citation_id}")
        return updated, result

    async def set_manual_review(
        self,
        check_id: str,
        citation_id: str,
        status: ManualReviewStatus | None,
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> tuple[Citation, DocumentSnapshot]:
        """Set or clear (``status=None``) the manual review override of a citation."""
        snapshot = await self.store.get(check_id)
        citation = self._citation(snapshot, citation_id)

        review = (
            ManualReview(status=status, notes=notes, reviewed_by=reviewer)
            if status is not None
            else None
        )
        updated = citation.model_copy(update={"manual_review": review})
        label = status.value if status else "cleared"

        result = await self._replace_citation(
            snapshot, updated, f"Manual review of {citation_id}: {label}"
        )
        return updated, result

    # ========================================================================
    # Paragraph Edits
    # ========================================================================

    async def edit_paragraph(self, check_id: str, paragraph_id: str, text: str) -> EditResult:
        """
        Apply a paragraph edit and validate the citations it introduced.

        The reconciled document is saved before validation starts, so a
        validation failure never loses the edit.

        Raises:
            NotFoundError: If the check or paragraph does not exist
            ValidationInputError: If the text is empty or carries malformed markers
        """
        snapshot = await self.store.get(check_id)
        document = snapshot.document
        paragraph = document.paragraph(paragraph_id)
        if paragraph is None:
            raise NotFoundError(f"Paragraph not found: {paragraph_id}")

        current = document.citations_in(paragraph_id)
        result = self.reconciler.reconcile(paragraph, text, current, snapshot.citation_counter)

        if not result.changed:
            return EditResult(paragraph=paragraph, check_id=snapshot.snapshot_id)

        # The parent may be behind the lineage; mint from reserved numbers.
        if result.new_citations:
            first = await self.store.reserve_citation_ids(
                snapshot.lineage_id, len(result.new_citations)
            )
            if first != snapshot.citation_counter:
                result = self.reconciler.reconcile(paragraph, text, current, first)

        content = [result.paragraph if p.id == paragraph_id else p for p in document.content]
        others = [c for c in document.citations if c.paragraph_id != paragraph_id]
        edited = document.model_copy(update={"content": content})
        edited.citations = order_citations(edited, others + result.citations)

        intermediate = await self.store.save_new_version(
            snapshot,
            edited,
            status=snapshot_status(edited.citations),
            citation_counter=result.next_counter,
            description=f"Edited {paragraph_id}",
        )

        if result.removed_citation_ids:
            logger.info(f"Edit of {paragraph_id} removed {', '.join(result.removed_citation_ids)}")

        if not result.new_citations:
            return EditResult(
                paragraph=result.paragraph,
                removed_citations=result.removed_citation_ids,
                check_id=intermediate.snapshot_id,
            )

        validated, error = await self._validate_new(intermediate, result.new_citations)

        final = intermediate
        if any(c.is_validated for c in validated):
            by_id = {c.id: c for c in validated}
            citations = [by_id.get(c.id, c) for c in intermediate.document.citations]
            final = await self.store.save_new_version(
                intermediate,
                intermediate.document.model_copy(update={"citations": citations}),
                status=snapshot_status(citations),
                description=f"Validated new citations in {paragraph_id}",
            )

        return EditResult(
            paragraph=result.paragraph,
            new_citations=validated,
            removed_citations=result.removed_citation_ids,
            check_id=final.snapshot_id,
            validation_error=error,
        )

    async def _validate_new(
        self,
        snapshot: DocumentSnapshot,
        citations: list[Citation],
    ) -> tuple[list[Citation], str | None]:
        """Best-effort validation; failures are reported, never raised."""
        semaphore = asyncio.Semaphore(self.concurrency)
        errors: list[str] = []

        async def validate(citation: Citation) -> Citation:
            async with semaphore:
                try:
                    context = extract_context(snapshot.document, citation)
                    return await self.validator.validate(citation, context)
                except Exception as e:
                    logger.error(f"Validation of new citation {citation.id} failed: {e}")
                    errors.append(f"{citation.id}: {e}")
                    return citation

        validated = list(await asyncio.gather(*(validate(c) for c in citations)))
        return validated, "; ".join(errors) or None

    # ========================================================================
    # Reporting
    # ========================================================================

    async def risk_summary(self, check_id: str) -> RiskSummary:
        snapshot = await self.store.get(check_id)
        return summarize_risk(snapshot.document.citations)

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _citation(snapshot: DocumentSnapshot, citation_id: str) -> Citation:
        citation = snapshot.document.citation(citation_id)
        if citation is None:
            raise NotFoundError(f"Citation {citation_id} not found in {snapshot.snapshot_id}")
        return citation

    async def _replace_citation(
        self,
        snapshot: DocumentSnapshot,
        updated: Citation,
        description: str,
    ) -> DocumentSnapshot:
        citations = [
            updated if c.id == updated.id else c for c in snapshot.document.citations
        ]
        return await self.store.save_new_version(
            snapshot,
            snapshot.document.model_copy(update={"citations": citations}),
            status=snapshot_status(citations),
            description=description,
        )
