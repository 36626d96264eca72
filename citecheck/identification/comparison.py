"""
Identifier Comparison.

Runs two identifiers over the same paragraphs and reports where they agree,
which citations only one of them found, and a per-type breakdown. Used to
judge the eyecite backend against the pattern backend on real documents.
"""

from collections import Counter

from pydantic import BaseModel, Field

from citecheck.identification.markers import normalize_citation, strip_markers
from citecheck.identification.patterns import Identifier
from citecheck.identification.schemas import CitationDocument, CitationType, DetectedCitation

MATCH_THRESHOLD = 0.7

Pair = tuple[DetectedCitation, DetectedCitation, float]


class FoundCitation(BaseModel):
    paragraph_id: str
    detection: DetectedCitation


class MatchedCitation(BaseModel):
    paragraph_id: str
    pattern: DetectedCitation
    eyecite: DetectedCitation
    similarity: float = Field(..., ge=0.0, le=1.0)


class IdentifierComparison(BaseModel):
    """Agreement between the pattern and eyecite identifiers on one document."""

    pattern_count: int = 0
    eyecite_count: int = 0
    overlap_count: int = 0
    overlapping: list[MatchedCitation] = Field(default_factory=list)
    pattern_only: list[FoundCitation] = Field(default_factory=list)
    eyecite_only: list[FoundCitation] = Field(default_factory=list)
    type_breakdown: dict[CitationType, dict[str, int]] = Field(default_factory=dict)


def citation_similarity(first: str, second: str) -> float:
    """
    Similarity of two citation texts between 0 and 1.

    Equal texts score 1; when one contains the other the score is the
    length ratio; otherwise it is the word-set Jaccard index.
    """
    a = normalize_citation(first)
    b = normalize_citation(second)

    if a == b:
        return 1.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))

    words_a, words_b = set(a.split()), set(b.split())
    union = words_a | words_b
    return len(words_a & words_b) / len(union) if union else 0.0


def _pair(
    pattern: list[DetectedCitation],
    eyecite: list[DetectedCitation],
    threshold: float,
) -> tuple[list[Pair], list[DetectedCitation], list[DetectedCitation]]:
    """Greedy best match of each pattern detection to an unused eyecite detection."""
    used: set[int] = set()
    pairs: list[Pair] = []
    unmatched: list[DetectedCitation] = []

    for detection in pattern:
        best: tuple[int, float] | None = None
        for i, candidate in enumerate(eyecite):
            if i in used:
                continue
            score = citation_similarity(detection.text, candidate.text)
            if score >= threshold and (best is None or score > best[1]):
                best = (i, score)

        if best is None:
            unmatched.append(detection)
            continue
        used.add(best[0])
        pairs.append((detection, eyecite[best[0]], best[1]))

    leftover = [c for i, c in enumerate(eyecite) if i not in used]
    return pairs, unmatched, leftover


def compare_identifiers(
    document: CitationDocument,
    pattern: Identifier,
    eyecite: Identifier,
    threshold: float = MATCH_THRESHOLD,
) -> IdentifierComparison:
    """
    Compare two identifiers paragraph by paragraph.

    Matching never crosses paragraphs, so the same citation text in two
    paragraphs is paired within each paragraph separately.
    """
    comparison = IdentifierComparison()
    pattern_types: Counter[CitationType] = Counter()
    eyecite_types: Counter[CitationType] = Counter()

    for paragraph in document.content:
        text = strip_markers(paragraph.text)
        found_pattern = pattern.identify(text)
        found_eyecite = eyecite.identify(text)

        comparison.pattern_count += len(found_pattern)
        comparison.eyecite_count += len(found_eyecite)
        pattern_types.update(d.citation_type for d in found_pattern)
        eyecite_types.update(d.citation_type for d in found_eyecite)

        pairs, pattern_only, eyecite_only = _pair(found_pattern, found_eyecite, threshold)
        comparison.overlapping.extend(
            MatchedCitation(paragraph_id=paragraph.id, pattern=p, eyecite=e, similarity=s)
            for p, e, s in pairs
        )
        comparison.pattern_only.extend(
            FoundCitation(paragraph_id=paragraph.id, detection=d) for d in pattern_only
        )
        comparison.eyecite_only.extend(
            FoundCitation(paragraph_id=paragraph.id, detection=d) for d in eyecite_only
        )

    comparison.overlap_count = len(comparison.overlapping)
    comparison.type_breakdown = {
        citation_type: {
            "pattern": pattern_types[citation_type],
            "eyecite": eyecite_types[citation_type],
        }
        for citation_type in CitationType
    }
    return comparison
