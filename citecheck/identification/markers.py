"""
Citation Markers.

Helpers for the in-text positional markers that wrap identified citations:
``[CITATION:cit_001]Smith v. Jones, ...[/CITATION:cit_001]``.
"""

import re
from dataclasses import dataclass

from citecheck.errors import ValidationInputError

MARKER_PATTERN = re.compile(r"\[(/?)CITATION:([^\]\[]*)\]")
MARKER_FRAGMENT_PATTERN = re.compile(r"\[/?CITATION:[^\]]*\]?")
MARKER_PREFIX_PATTERN = re.compile(r"\[/?CITATION:")
WELL_FORMED_ID = re.compile(r"^cit_\d{3,}$")


@dataclass(frozen=True)
class MarkedSpan:
    """A marker pair located in the marker-free text."""

    citation_id: str
    start: int
    end: int


def strip_markers(text: str) -> str:
    """Remove all citation markers, including malformed fragments."""
    return MARKER_FRAGMENT_PATTERN.sub("", text)


def normalize_text(text: str) -> str:
    """Marker-free, whitespace-collapsed text used for change detection."""
    return " ".join(strip_markers(text).split())


def normalize_citation(text: str) -> str:
    """Comparison key for citation text."""
    return " ".join(text.split()).lower().rstrip(".,;")


def has_markers(text: str) -> bool:
    return MARKER_PATTERN.search(text) is not None


def _reject_fragments(segment: str) -> None:
    if MARKER_PREFIX_PATTERN.search(segment):
        raise ValidationInputError("Malformed citation marker fragment in text")


def parse_markers(text: str) -> tuple[str, list[MarkedSpan]]:
    """
    Split marked text into plain text and marker spans.

    Args:
        text: Paragraph text that may contain citation markers

    Returns:
        Tuple of (marker-free text, spans in order of their opening marker)

    Raises:
        ValidationInputError: If markers are malformed, nested or unbalanced
    """
    plain_parts: list[str] = []
    spans: list[MarkedSpan] = []
    open_id: str | None = None
    open_start = 0
    seen_ids: set[str] = set()
    plain_length = 0
    cursor = 0

    for match in MARKER_PATTERN.finditer(text):
        segment = text[cursor:match.start()]
        _reject_fragments(segment)
        plain_parts.append(segment)
        plain_length += len(segment)
        cursor = match.end()

        is_closing = match.group(1) == "/"
        citation_id = match.group(2)

        if not WELL_FORMED_ID.match(citation_id):
            raise ValidationInputError(f"Malformed citation marker: {match.group(0)!r}")

        if not is_closing:
            if open_id is not None:
                raise ValidationInputError(
                    f"Nested citation marker {citation_id} inside {open_id}"
                )
            if citation_id in seen_ids:
                raise ValidationInputError(f"Duplicate citation marker {citation_id}")
            open_id = citation_id
            open_start = plain_length
            continue

        if open_id != citation_id:
            raise ValidationInputError(
                f"Closing marker {citation_id} does not match open marker {open_id}"
            )
        spans.append(MarkedSpan(citation_id=citation_id, start=open_start, end=plain_length))
        seen_ids.add(citation_id)
        open_id = None

    if open_id is not None:
        raise ValidationInputError(f"Unclosed citation marker {open_id}")

    tail = text[cursor:]
    _reject_fragments(tail)

    plain_parts.append(tail)
    return "".join(plain_parts), spans


def insert_markers(text: str, spans: list[MarkedSpan]) -> str:
    """Wrap each span of plain text in its citation markers."""
    pieces: list[str] = []
    cursor = 0

    for span in sorted(spans, key=lambda s: s.start):
        pieces.append(text[cursor:span.start])
        pieces.append(f"[CITATION:{span.citation_id}]")
        pieces.append(text[span.start:span.end])
        pieces.append(f"[/CITATION:{span.citation_id}]")
        cursor = span.end

    pieces.append(text[cursor:])
    return "".join(pieces)
