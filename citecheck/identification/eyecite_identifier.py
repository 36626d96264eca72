"""
Eyecite Citation Identifier.

Case citations come from the eyecite library, which knows every reporter in
reporters-db and recovers the case name and parenthetical around a reporter
cite. Statutes, regulations and rules still come from the pattern
identifier, so both backends return the same set of citation types.

Short forms ("Smith, 123 F.3d at 460"), "Id." and "supra" refer back to an
earlier citation and are not reported as citations of their own.
"""

import re

from eyecite import get_citations
from eyecite.models import CitationBase, FullCaseCitation

from citecheck.identification.patterns import (
    CitationIdentifier,
    resolve_overlaps,
    trim_signal_words,
)
from citecheck.identification.schemas import CitationType, DetectedCitation
from citecheck.utils.logger import get_logger

logger = get_logger(__name__)

# "(9th Cir. 2020)" closing a full case citation
PARENTHETICAL_PATTERN = re.compile(r"\((?P<court>[^()]*?)\s*(?P<year>\d{4})\)$")


class EyeciteIdentifier:
    """
    Detect citations with eyecite for cases and patterns for everything else.

    Usage:
        identifier = EyeciteIdentifier()
        found = identifier.identify("See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020).")
    """

    def __init__(self, patterns: CitationIdentifier | None = None) -> None:
        self.patterns = patterns or CitationIdentifier()

    def identify(self, text: str) -> list[DetectedCitation]:
        """
        Find all citations in marker-free text.

        Returns:
            Non-overlapping detections ordered by start offset
        """
        cases: list[DetectedCitation] = []
        skipped = 0

        for citation in get_citations(text):
            detection = self._case(citation, text)
            if detection is None:
                skipped += 1
                continue
            cases.append(detection)

        others = [
            d for d in self.patterns.identify(text)
            if d.citation_type != CitationType.CASE
        ]

        detected = resolve_overlaps(cases + others)
        logger.debug(
            f"Eyecite identified {len(detected)} citations "
            f"({len(cases)} cases, {skipped} references skipped)"
        )
        return detected

    @staticmethod
    def _case(citation: CitationBase, text: str) -> DetectedCitation | None:
        if not isinstance(citation, FullCaseCitation):
            return None

        start, end = citation.full_span()
        while end > start and text[end - 1].isspace():
            end -= 1

        metadata = citation.metadata
        groups = citation.groups
        components = {
            "party_1": " ".join((metadata.plaintiff or "").split()),
            "party_2": " ".join((metadata.defendant or "").split()),
            "volume": groups.get("volume") or "",
            "reporter": groups.get("reporter") or "",
            "page": groups.get("page") or "",
            "pin_cite": (metadata.pin_cite or "").lstrip(", "),
            "court": "",
            "year": metadata.year or "",
        }

        parenthetical = PARENTHETICAL_PATTERN.search(text[start:end])
        if parenthetical:
            components["court"] = " ".join(parenthetical.group("court").split())
            components["year"] = parenthetical.group("year")

        components = {k: v for k, v in components.items() if v or k == "court"}
        start, components = trim_signal_words(text, start, components)

        return DetectedCitation(
            text=text[start:end],
            citation_type=CitationType.CASE,
            start=start,
            end=end,
            components=components,
        )
