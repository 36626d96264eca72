"""
Paragraph Reconciler - Stable Citation Identity Across Edits.

When a paragraph's text changes, re-identifies its citations and decides
which are the same citation as before (keeping ID and validation history),
which are new (fresh IDs from the document counter) and which were removed.
IDs are never reused: new IDs always come from the monotonic counter, so a
retired ``cit_003`` can never be handed to a different citation.
"""

from app.config import IdentifierBackend
from citecheck.errors import ValidationInputError
from citecheck.identification.eyecite_identifier import EyeciteIdentifier
from citecheck.identification.format_checker import check_format
from citecheck.identification.markers import (
    MarkedSpan,
    insert_markers,
    normalize_citation,
    normalize_text,
    parse_markers,
    strip_markers,
)
from citecheck.identification.patterns import CitationIdentifier, Identifier
from citecheck.identification.schemas import (
    Citation,
    DetectedCitation,
    Paragraph,
    ReconciliationResult,
    format_citation_id,
)
from citecheck.utils.logger import get_logger

logger = get_logger(__name__)


class ParagraphReconciler:
    """
    Reconcile a paragraph's citation set against new text.

    Usage:
        reconciler = ParagraphReconciler()
        result = reconciler.reconcile(paragraph, edited_text, citations, counter=7)
        document_counter = result.next_counter
    """

    def __init__(self, identifier: Identifier | None = None) -> None:
        self.identifier = identifier or CitationIdentifier()

    @classmethod
    def for_backend(cls, backend: IdentifierBackend) -> "ParagraphReconciler":
        if backend == IdentifierBackend.EYECITE:
            return cls(identifier=EyeciteIdentifier())
        return cls(identifier=CitationIdentifier())

    def reconcile(
        self,
        paragraph: Paragraph,
        edited_text: str,
        citations: list[Citation],
        counter: int,
    ) -> ReconciliationResult:
        """
        Reconcile an edited paragraph.

        Args:
            paragraph: Paragraph as currently stored
            edited_text: New paragraph text, plain or still carrying markers
            citations: Current citations of this paragraph
            counter: Next citation number for the document

        Returns:
            ReconciliationResult; ``changed`` is False when the text is unchanged

        Raises:
            ValidationInputError: If the text is empty or markers are malformed
        """
        if not isinstance(edited_text, str):
            raise ValidationInputError("Paragraph text must be a string")
        if not edited_text.strip():
            raise ValidationInputError("Paragraph text cannot be empty")
        if counter < 1:
            raise ValidationInputError(f"Citation counter must be positive, got {counter}")

        if normalize_text(edited_text) == normalize_text(paragraph.text):
            logger.debug(f"Paragraph {paragraph.id} unchanged, skipping reconciliation")
            return ReconciliationResult(
                paragraph=paragraph.model_copy(),
                citations=[c.model_copy() for c in citations],
                retained_citation_ids=[c.id for c in citations],
                next_counter=counter,
                changed=False,
            )

        plain_text, hints = parse_markers(edited_text)
        return self._rebuild(paragraph, plain_text, hints, citations, counter)

    def refresh(
        self,
        paragraph: Paragraph,
        citations: list[Citation],
        counter: int,
    ) -> ReconciliationResult:
        """
        Re-identify citations in a paragraph's current text.

        Used by the identify step; existing citations that are still detected
        keep their IDs and history.
        """
        try:
            plain_text, hints = parse_markers(paragraph.text)
        except ValidationInputError as e:
            logger.warning(f"Paragraph {paragraph.id} has damaged markers, ignoring them: {e}")
            plain_text, hints = strip_markers(paragraph.text), []

        return self._rebuild(paragraph, plain_text, hints, citations, counter)

    def _rebuild(
        self,
        paragraph: Paragraph,
        plain_text: str,
        hints: list[MarkedSpan],
        citations: list[Citation],
        counter: int,
    ) -> ReconciliationResult:
        detections = self.identifier.identify(plain_text)
        matches = self._match(detections, citations, hints)

        result_citations: list[Citation] = []
        new_citations: list[Citation] = []
        retained_ids: list[str] = []

        for detection, prior in zip(detections, matches):
            if prior is not None:
                updated = prior.model_copy(update={
                    "citation_text": detection.text,
                    "paragraph_id": paragraph.id,
                    "start": detection.start,
                    "end": detection.end,
                    "components": detection.components,
                })
                result_citations.append(updated)
                retained_ids.append(prior.id)
                continue

            citation = Citation(
                id=format_citation_id(counter),
                citation_text=detection.text,
                citation_type=detection.citation_type,
                paragraph_id=paragraph.id,
                start=detection.start,
                end=detection.end,
                components=detection.components,
                tier_1=check_format(detection.citation_type, detection.components),
            )
            counter += 1
            result_citations.append(citation)
            new_citations.append(citation)

        matched_ids = set(retained_ids)
        removed_ids = [c.id for c in citations if c.id not in matched_ids]

        marked_text = insert_markers(
            plain_text,
            [MarkedSpan(c.id, c.start, c.end) for c in result_citations],
        )

        logger.info(
            f"Reconciled paragraph {paragraph.id}: {len(retained_ids)} kept, "
            f"{len(new_citations)} new, {len(removed_ids)} removed"
        )

        return ReconciliationResult(
            paragraph=paragraph.model_copy(update={"text": marked_text}),
            citations=result_citations,
            new_citations=new_citations,
            removed_citation_ids=removed_ids,
            retained_citation_ids=retained_ids,
            next_counter=counter,
            changed=True,
        )

    @staticmethod
    def _match(
        detections: list[DetectedCitation],
        citations: list[Citation],
        hints: list[MarkedSpan],
    ) -> list[Citation | None]:
        """
        Pair each detection with at most one prior citation of equal text.

        Among equal-text candidates, the one whose marker encloses the
        detection wins, then the one closest to its previous offset.
        """
        available = {c.id: c for c in citations}
        matches: list[Citation | None] = []

        for detection in detections:
            key = normalize_citation(detection.text)
            candidates = [
                c for c in available.values()
                if normalize_citation(c.citation_text) == key
            ]

            if not candidates:
                matches.append(None)
                continue

            hinted_ids = {
                h.citation_id for h in hints
                if h.start < detection.end and detection.start < h.end
            }
            hinted = [c for c in candidates if c.id in hinted_ids]
            pool = hinted or candidates

            chosen = min(pool, key=lambda c: (abs(c.start - detection.start), c.number))
            del available[chosen.id]
            matches.append(chosen)

        return matches
