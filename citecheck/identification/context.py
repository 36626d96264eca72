"""
Citation Context Extraction.

Builds the document window an agent sees alongside a citation: the containing
paragraph with markers removed, preceded by the last sentences of the
previous paragraph.
"""

import re

from citecheck.identification.markers import strip_markers
from citecheck.identification.schemas import Citation, CitationDocument
from citecheck.utils.logger import get_logger

logger = get_logger(__name__)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[\"'(]?[A-Z])")
INITIALISM = re.compile(r"^(?:[A-Za-z]\.)+$")

# Tokens ending in a period that do not end a sentence
ABBREVIATIONS = {
    "v.", "vs.", "inc.", "corp.", "co.", "ltd.", "no.", "nos.", "fed.", "civ.",
    "crim.", "evid.", "app.", "cir.", "supp.", "ct.", "ed.", "stat.", "dist.",
    "cal.", "tex.", "pa.", "mass.", "ill.", "e.g.", "i.e.", "cf.", "id.", "mr.",
    "ms.", "dr.", "st.", "art.", "sec.", "para.",
}

PRECEDING_SENTENCES = 2


def _clean(text: str) -> str:
    return " ".join(strip_markers(text).split())


def split_sentences(text: str) -> list[str]:
    """Split text into sentences without breaking on legal abbreviations."""
    sentences: list[str] = []

    for piece in SENTENCE_BOUNDARY.split(text):
        piece = piece.strip()
        if not piece:
            continue
        if sentences:
            last_token = sentences[-1].split()[-1]
            if last_token.lower() in ABBREVIATIONS or INITIALISM.match(last_token):
                sentences[-1] = f"{sentences[-1]} {piece}"
                continue
        sentences.append(piece)

    return sentences


def _last_sentences(text: str, count: int) -> str:
    sentences = split_sentences(_clean(text))
    return " ".join(sentences[-count:])


def extract_context(
    document: CitationDocument,
    citation: Citation,
    include_preceding: bool = True,
) -> str:
    """
    Extract the context window for one citation.

    Args:
        document: Document holding the citation
        citation: Citation to build context for
        include_preceding: Prepend the tail of the previous paragraph

    Returns:
        Context text, or an empty string when the paragraph cannot be found
    """
    index = document.paragraph_index(citation.paragraph_id)

    if index is None:
        marker = f"[CITATION:{citation.id}]"
        index = next(
            (i for i, p in enumerate(document.content) if marker in p.text),
            None,
        )

    if index is None:
        logger.warning(f"Citation {citation.id} not found in document content")
        return ""

    context = _clean(document.content[index].text)

    if include_preceding and index > 0:
        preceding = _last_sentences(document.content[index - 1].text, PRECEDING_SENTENCES)
        if preceding:
            context = f"{preceding} {context}"

    return context


def extract_contexts(
    document: CitationDocument,
    citations: list[Citation],
    include_preceding: bool = True,
) -> dict[str, str]:
    """Map citation ID to its context window."""
    return {
        citation.id: extract_context(document, citation, include_preceding)
        for citation in citations
    }
