"""
Citation Identifier - Tier 1 Pattern Matching.

Finds case, statute, regulation and rule citations in marker-free paragraph
text. Overlapping matches resolve to the longer match, so "28 U.S.C. § 1332"
is never split into a second "8 U.S.C. § 1332" hit.
"""

import re
from collections.abc import Callable
from typing import Protocol

from citecheck.identification.schemas import CitationType, DetectedCitation
from citecheck.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Citation Patterns
# ============================================================================

_PARTY_WORD = r"[A-Z][A-Za-z0-9&.'\-]*"
_PARTY_CONNECTOR = r"(?:of|the|and|for|de|ex\s+rel\.|et\s+al\.|&)"
_PARTY = rf"{_PARTY_WORD}(?:,?\s+(?:{_PARTY_WORD}|{_PARTY_CONNECTOR}))*?"
_SUBSECTIONS = r"(?:\([A-Za-z0-9]+\))*"

# Smith v. Jones, 123 F.3d 456, 460 (9th Cir. 2020)
CASE_PATTERN = (
    rf"(?P<party_1>{_PARTY})\s+v\.?\s+(?P<party_2>{_PARTY}),\s+"
    r"(?P<volume>\d+)\s+(?P<reporter>[A-Z][A-Za-z0-9.' ]*?)\s+(?P<page>\d+)"
    r"(?:,\s*(?P<pin_cite>\d+(?:[-–]\d+)?))?"
    r"\s+\((?P<court>[^()]*?)\s*(?P<year>\d{4})\)"
)

# 42 U.S.C. § 1983, 15 U.S.C. Supp. § 78j(b)
STATUTE_PATTERN = (
    r"\b(?P<volume>\d+)\s+(?P<code>U\.S\.C\.(?:\s+Supp\.)?)\s+§§?\s*"
    rf"(?P<section>\d+[a-z]*{_SUBSECTIONS})"
)

# 29 C.F.R. § 1910.1200
REGULATION_PATTERN = (
    r"\b(?P<volume>\d+)\s+(?P<code>C\.F\.R\.)\s+§§?\s*"
    rf"(?P<section>\d+\.\d+[a-z]*{_SUBSECTIONS})"
)

# Fed. R. Civ. P. 12(b)(6), Fed. R. Evid. 702
FEDERAL_RULE_PATTERN = (
    r"Fed\.\s*R\.\s*(?P<category>Civ|Crim|Evid|App|Bankr)\.\s*(?:P\.\s*)?"
    rf"(?P<rule_number>\d+[a-z]*{_SUBSECTIONS})"
)

# Federal Rule of Civil Procedure 12(b)(6)
FEDERAL_RULE_FULL_PATTERN = (
    r"Federal\s+Rules?\s+of\s+"
    r"(?P<category>Civil\s+Procedure|Criminal\s+Procedure|Appellate\s+Procedure|"
    r"Bankruptcy\s+Procedure|Evidence)\s+"
    rf"(?P<rule_number>\d+[a-z]*{_SUBSECTIONS})"
)

# Civil Local Rule 7.1
LOCAL_RULE_PATTERN = (
    r"(?:(?:Civil|Criminal|District|Circuit)\s+)?Local\s+Rule\s+"
    rf"(?P<rule_number>\d+\.\d+[a-z]*{_SUBSECTIONS})"
)

# Revised Statutes § 4700
REVISED_STATUTES_PATTERN = (
    rf"Revised\s+Statutes\s+§\s*(?P<section>\d+[a-z]*{_SUBSECTIONS})"
)

RULE_ABBREVIATIONS = {
    "civ": "Civ",
    "civil procedure": "Civ",
    "crim": "Crim",
    "criminal procedure": "Crim",
    "evid": "Evid",
    "evidence": "Evid",
    "app": "App",
    "appellate procedure": "App",
    "bankr": "Bankr",
    "bankruptcy procedure": "Bankr",
}

RULE_CATEGORIES = {
    "Civ": "Civil Procedure",
    "Crim": "Criminal Procedure",
    "Evid": "Evidence",
    "App": "Appellate Procedure",
    "Bankr": "Bankruptcy Procedure",
}

# Capitalised words that introduce a case name but are not part of it
SIGNAL_WORDS = {
    "accord",
    "also",
    "as",
    "but",
    "cf.",
    "citing",
    "compare",
    "contra",
    "e.g.",
    "e.g.,",
    "following",
    "in",
    "quoting",
    "see",
    "the",
    "under",
}


# ============================================================================
# Component Builders
# ============================================================================


def _case_components(match: re.Match[str]) -> dict[str, str]:
    components = {
        name: " ".join(value.split())
        for name, value in match.groupdict().items()
        if value
    }
    components.setdefault("court", "")
    return components


def _code_components(match: re.Match[str]) -> dict[str, str]:
    return {name: " ".join(value.split()) for name, value in match.groupdict().items() if value}


def _federal_rule_components(match: re.Match[str]) -> dict[str, str]:
    category = " ".join(match.group("category").split())
    abbreviation = RULE_ABBREVIATIONS.get(category.lower(), category)
    code = "Fed. R. Evid." if abbreviation == "Evid" else f"Fed. R. {abbreviation}. P."
    return {
        "code": code,
        "category": RULE_CATEGORIES.get(abbreviation, category),
        "rule_number": match.group("rule_number"),
    }


def _local_rule_components(match: re.Match[str]) -> dict[str, str]:
    return {
        "code": "Local Rule",
        "category": "Local Rules",
        "rule_number": match.group("rule_number"),
    }


def _revised_statutes_components(match: re.Match[str]) -> dict[str, str]:
    return {
        "volume": "",
        "code": "Rev. Stat.",
        "section": match.group("section"),
    }


ComponentBuilder = Callable[[re.Match[str]], dict[str, str]]

CITATION_PATTERNS: list[tuple[str, CitationType, int, ComponentBuilder]] = [
    (CASE_PATTERN, CitationType.CASE, 0, _case_components),
    (STATUTE_PATTERN, CitationType.STATUTE, re.IGNORECASE, _code_components),
    (REGULATION_PATTERN, CitationType.REGULATION, re.IGNORECASE, _code_components),
    (FEDERAL_RULE_PATTERN, CitationType.RULE, re.IGNORECASE, _federal_rule_components),
    (FEDERAL_RULE_FULL_PATTERN, CitationType.RULE, re.IGNORECASE, _federal_rule_components),
    (LOCAL_RULE_PATTERN, CitationType.RULE, re.IGNORECASE, _local_rule_components),
    (REVISED_STATUTES_PATTERN, CitationType.STATUTE, re.IGNORECASE, _revised_statutes_components),
]


# ============================================================================
# Citation Identifier
# ============================================================================


class Identifier(Protocol):
    """Anything that finds citations in marker-free text."""

    def identify(self, text: str) -> list[DetectedCitation]: ...


class CitationIdentifier:
    """
    Detect legal citations in plain paragraph text.

    Usage:
        identifier = CitationIdentifier()
        found = identifier.identify("See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020).")
    """

    def __init__(self) -> None:
        self._compiled_patterns = [
            (re.compile(pattern, flags), citation_type, builder)
            for pattern, citation_type, flags, builder in CITATION_PATTERNS
        ]

    def identify(self, text: str) -> list[DetectedCitation]:
        """
        Find all citations in marker-free text.

        Args:
            text: Paragraph text without citation markers

        Returns:
            Non-overlapping detections ordered by start offset
        """
        candidates: list[DetectedCitation] = []

        for pattern, citation_type, builder in self._compiled_patterns:
            for match in pattern.finditer(text):
                components = builder(match)
                start = match.start()

                if citation_type == CitationType.CASE:
                    start, components = trim_signal_words(text, start, components)

                candidates.append(DetectedCitation(
                    text=text[start:match.end()],
                    citation_type=citation_type,
                    start=start,
                    end=match.end(),
                    components=components,
                ))

        detected = resolve_overlaps(candidates)
        logger.debug(f"Identified {len(detected)} citations ({len(candidates)} raw matches)")
        return detected


# ============================================================================
# Shared Helpers
# ============================================================================


def trim_signal_words(
    text: str,
    start: int,
    components: dict[str, str],
) -> tuple[int, dict[str, str]]:
    """Drop introductory signals ("See", "In", "Cf.") captured into the first party."""
    party = components.get("party_1", "")
    words = party.split()

    while len(words) > 1 and words[0].lower() in SIGNAL_WORDS:
        words.pop(0)

    if len(words) == len(party.split()):
        return start, components

    first_word = words[0]
    offset = text.index(first_word, start)
    trimmed = dict(components)
    trimmed["party_1"] = " ".join(words)
    return offset, trimmed


def resolve_overlaps(candidates: list[DetectedCitation]) -> list[DetectedCitation]:
    """Keep the longest of any overlapping matches, then order by position."""
    ordered = sorted(candidates, key=lambda c: (-(c.end - c.start), c.start))
    kept: list[DetectedCitation] = []

    for candidate in ordered:
        overlaps = any(
            not (candidate.end <= existing.start or candidate.start >= existing.end)
            for existing in kept
        )
        if not overlaps:
            kept.append(candidate)

    kept.sort(key=lambda c: c.start)
    return kept
