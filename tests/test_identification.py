"""
Tests for the Identification Layer.

Citation patterns, the Tier-1 format checker, citation markers and
context extraction, plus the eyecite backend and the comparison of
the two identifiers. Everything here is deterministic; no LLM required.
"""

import pytest

from app.config import IdentifierBackend
from citecheck.errors import ValidationInputError
from citecheck.identification.comparison import citation_similarity, compare_identifiers
from citecheck.identification.context import extract_context, extract_contexts, split_sentences
from citecheck.identification.eyecite_identifier import EyeciteIdentifier
from citecheck.identification.format_checker import check_format, is_known_court, is_known_reporter
from citecheck.identification.markers import (
    MarkedSpan,
    insert_markers,
    normalize_text,
    parse_markers,
    strip_markers,
)
from citecheck.identification.patterns import CitationIdentifier
from citecheck.identification.reconciler import ParagraphReconciler
from citecheck.identification.schemas import (
    CitationDocument,
    CitationType,
    DetectedCitation,
    FormatStatus,
    Paragraph,
    citation_number,
    format_citation_id,
)
from tests.conftest import PARAGRAPH_TEXTS

# ============================================================================
# Citation Identifier Tests
# ============================================================================


class TestCitationIdentifier:
    """Tests for CitationIdentifier pattern matching."""

    @pytest.fixture
    def identifier(self) -> CitationIdentifier:
        return CitationIdentifier()

    def test_identifies_case_and_statute(self, identifier) -> None:
        """Test both citations in a paragraph are found in text order."""
        found = identifier.identify(PARAGRAPH_TEXTS[0])

        assert [d.citation_type for d in found] == [CitationType.STATUTE, CitationType.CASE]
        assert found[0].text == "42 U.S.C. § 1983"
        assert found[1].text == "Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)"

    def test_case_components(self, identifier) -> None:
        """Test case citations are split into their structural parts."""
        case = identifier.identify(PARAGRAPH_TEXTS[0])[1]

        assert case.components["party_1"] == "Smith"
        assert case.components["party_2"] == "Jones"
        assert case.components["volume"] == "123"
        assert case.components["reporter"] == "F.3d"
        assert case.components["page"] == "456"
        assert case.components["court"] == "9th Cir."
        assert case.components["year"] == "2020"

    def test_offsets_match_text(self, identifier) -> None:
        """Test start/end offsets slice the detected text out of the paragraph."""
        for text in PARAGRAPH_TEXTS:
            for detection in identifier.identify(text):
                assert text[detection.start:detection.end] == detection.text

    def test_signal_words_trimmed(self, identifier) -> None:
        """Test introductory signals are not part of the case name."""
        found = identifier.identify(PARAGRAPH_TEXTS[2])
        case = next(d for d in found if d.citation_type == CitationType.CASE)

        assert case.text.startswith("Doe v. Roe")
        assert case.components["party_1"] == "Doe"
        assert case.components["pin_cite"] == "105"

    def test_supreme_court_case_without_court(self, identifier) -> None:
        """Test U.S. Reports citations carry an empty court."""
        found = identifier.identify(PARAGRAPH_TEXTS[1])
        case = next(d for d in found if d.citation_type == CitationType.CASE)

        assert case.text == "Brown v. Board of Education, 347 U.S. 483 (1954)"
        assert case.components["reporter"] == "U.S."
        assert case.components["court"] == ""
        assert case.components["party_2"] == "Board of Education"

    def test_regulation(self, identifier) -> None:
        """Test C.F.R. citations are regulations."""
        found = identifier.identify(PARAGRAPH_TEXTS[1])
        regulation = next(d for d in found if d.citation_type == CitationType.REGULATION)

        assert regulation.text == "29 C.F.R. § 1910.1200"
        assert regulation.components["section"] == "1910.1200"

    def test_federal_rule_abbreviated(self, identifier) -> None:
        """Test abbreviated federal rules with subdivisions."""
        found = identifier.identify(PARAGRAPH_TEXTS[2])
        rule = found[0]

        assert rule.citation_type == CitationType.RULE
        assert rule.text == "Fed. R. Civ. P. 12(b)(6)"
        assert rule.components["code"] == "Fed. R. Civ. P."
        assert rule.components["rule_number"] == "12(b)(6)"

    def test_federal_rule_spelled_out(self, identifier) -> None:
        """Test spelled-out rule names normalise to the abbreviated code."""
        found = identifier.identify("Expert testimony is governed by Federal Rule of Evidence 702.")

        assert len(found) == 1
        assert found[0].components["code"] == "Fed. R. Evid."
        assert found[0].components["category"] == "Evidence"

    def test_local_rule(self, identifier) -> None:
        """Test local rules are identified."""
        found = identifier.identify("The motion complies with Civil Local Rule 7.1.")

        assert len(found) == 1
        assert found[0].citation_type == CitationType.RULE
        assert found[0].components["rule_number"] == "7.1"

    def test_statute_with_subsections(self, identifier) -> None:
        """Test statute sections keep their subsection suffixes."""
        found = identifier.identify("Section 10(b) is codified at 15 U.S.C. § 78j(b).")

        assert [d.text for d in found] == ["15 U.S.C. § 78j(b)"]

    def test_no_citations(self, identifier) -> None:
        """Test plain prose yields nothing."""
        assert identifier.identify("The parties met and conferred.") == []
        assert identifier.identify("") == []


# ============================================================================
# Eyecite Identifier Tests
# ============================================================================


class TestEyeciteIdentifier:
    """Tests for the eyecite-backed identifier."""

    @pytest.fixture
    def identifier(self) -> EyeciteIdentifier:
        return EyeciteIdentifier()

    def test_same_types_as_patterns(self, identifier) -> None:
        """Test both backends report the same citation types in text order."""
        patterns = CitationIdentifier()

        for text in PARAGRAPH_TEXTS:
            found = identifier.identify(text)
            expected = patterns.identify(text)
            assert [d.citation_type for d in found] == [d.citation_type for d in expected]

    def test_case_components(self, identifier) -> None:
        found = identifier.identify(PARAGRAPH_TEXTS[0])
        case = next(d for d in found if d.citation_type == CitationType.CASE)

        assert case.text.endswith("123 F.3d 456 (9th Cir. 2020)")
        assert case.components["volume"] == "123"
        assert case.components["reporter"] == "F.3d"
        assert case.components["page"] == "456"
        assert case.components["court"] == "9th Cir."
        assert case.components["year"] == "2020"

    def test_codes_and_rules_come_from_patterns(self, identifier) -> None:
        found = identifier.identify(PARAGRAPH_TEXTS[0] + " " + PARAGRAPH_TEXTS[2])

        texts = [d.text for d in found if d.citation_type != CitationType.CASE]
        assert texts == ["42 U.S.C. § 1983", "Fed. R. Civ. P. 12(b)(6)"]

    def test_offsets_match_text(self, identifier) -> None:
        for text in PARAGRAPH_TEXTS:
            for detection in identifier.identify(text):
                assert text[detection.start:detection.end] == detection.text

    def test_references_skipped(self, identifier) -> None:
        """Test short forms and Id. are not reported as separate citations."""
        text = (
            "See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020). "
            "Id. at 460. The panel later repeated the point. Smith, 123 F.3d at 458."
        )

        found = identifier.identify(text)

        assert len(found) == 1
        assert found[0].citation_type == CitationType.CASE

    def test_no_citations(self, identifier) -> None:
        assert identifier.identify("The parties met and conferred.") == []

    def test_reconciler_for_backend(self) -> None:
        assert isinstance(
            ParagraphReconciler.for_backend(IdentifierBackend.EYECITE).identifier,
            EyeciteIdentifier,
        )
        assert isinstance(
            ParagraphReconciler.for_backend(IdentifierBackend.REGEX).identifier,
            CitationIdentifier,
        )


# ============================================================================
# Identifier Comparison Tests
# ============================================================================


class FixedIdentifier:
    """Identifier returning the same detections for every paragraph."""

    def __init__(self, *detections: DetectedCitation) -> None:
        self.detections = list(detections)

    def identify(self, text: str) -> list[DetectedCitation]:
        return list(self.detections)


def detection(text: str, citation_type: CitationType = CitationType.CASE) -> DetectedCitation:
    return DetectedCitation(text=text, citation_type=citation_type, start=0, end=len(text))


class TestIdentifierComparison:
    """Tests for comparing two identifiers."""

    def test_similarity(self) -> None:
        assert citation_similarity("42 U.S.C. § 1983", "42  u.s.c. § 1983.") == 1.0
        assert citation_similarity("123 F.3d 456", "Smith v. Jones, 123 F.3d 456") == pytest.approx(
            12 / 28
        )
        assert citation_similarity("Fed. R. Evid. 702", "Fed. R. Civ. P. 12") == pytest.approx(
            2 / 7
        )

    def test_overlap_and_exclusive(self) -> None:
        document = CitationDocument(content=[Paragraph(id="p1", text="ignored")])
        pattern = FixedIdentifier(
            detection("Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)"),
            detection("Civil Local Rule 7.1", CitationType.RULE),
        )
        eyecite = FixedIdentifier(
            detection("Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)"),
            detection("Roe v. Wade, 410 U.S. 113 (1973)"),
        )

        comparison = compare_identifiers(document, pattern, eyecite)

        assert comparison.pattern_count == 2
        assert comparison.eyecite_count == 2
        assert comparison.overlap_count == 1
        assert comparison.overlapping[0].similarity == 1.0
        assert [f.detection.text for f in comparison.pattern_only] == ["Civil Local Rule 7.1"]
        assert [f.detection.text for f in comparison.eyecite_only] == [
            "Roe v. Wade, 410 U.S. 113 (1973)"
        ]
        assert comparison.type_breakdown[CitationType.CASE] == {"pattern": 1, "eyecite": 2}
        assert comparison.type_breakdown[CitationType.RULE] == {"pattern": 1, "eyecite": 0}

    def test_each_eyecite_match_used_once(self) -> None:
        document = CitationDocument(content=[Paragraph(id="p1", text="ignored")])
        same = "42 U.S.C. § 1983"
        pattern = FixedIdentifier(detection(same), detection(same))
        eyecite = FixedIdentifier(detection(same))

        comparison = compare_identifiers(document, pattern, eyecite)

        assert comparison.overlap_count == 1
        assert len(comparison.pattern_only) == 1

    def test_real_backends_on_document(self, sample_document) -> None:
        comparison = compare_identifiers(sample_document, CitationIdentifier(), EyeciteIdentifier())

        assert comparison.pattern_count == 6
        assert comparison.eyecite_count == 6
        assert comparison.type_breakdown[CitationType.CASE] == {"pattern": 3, "eyecite": 3}
        assert comparison.overlap_count >= 3


# ============================================================================
# Format Checker Tests
# ============================================================================


class TestFormatChecker:
    """Tests for the Tier-1 format check."""

    def test_valid_case(self) -> None:
        result = check_format(
            CitationType.CASE,
            {"reporter": "F.3d", "court": "9th Cir.", "year": "2020"},
            current_year=2024,
        )

        assert result.format_status == FormatStatus.VALID_FORMAT
        assert result.confidence == 0.99
        assert result.issues == []

    def test_unknown_reporter(self) -> None:
        """Test an unknown reporter is an invalid format."""
        result = check_format(
            CitationType.CASE,
            {"reporter": "F.5th", "court": "9th Cir.", "year": "2020"},
            current_year=2024,
        )

        assert result.format_status == FormatStatus.INVALID_FORMAT
        assert "Unknown reporter: F.5th" in result.issues

    def test_implausible_year(self) -> None:
        """Test future and pre-federal years are ambiguous rather than invalid."""
        for year in ("2999", "1700"):
            result = check_format(
                CitationType.CASE,
                {"reporter": "F.3d", "court": "9th Cir.", "year": year},
                current_year=2024,
            )
            assert result.format_status == FormatStatus.AMBIGUOUS_FORMAT

    def test_district_courts(self) -> None:
        assert is_known_court("N.D. Cal.")
        assert is_known_court("D. Mass.")
        assert not is_known_court("Q.D. Cal.")

    def test_reporter_lookup_normalises_whitespace(self) -> None:
        assert is_known_reporter("F.  Supp. 2d")
        assert not is_known_reporter("Fake Rptr.")

    def test_statutes_and_regulations(self) -> None:
        assert check_format(
            CitationType.STATUTE, {"code": "U.S.C."}
        ).format_status == FormatStatus.VALID_FORMAT
        assert check_format(
            CitationType.REGULATION, {"code": "C.F.R."}
        ).format_status == FormatStatus.VALID_FORMAT

        result = check_format(CitationType.STATUTE, {"code": "Cal. Penal Code"})
        assert result.format_status == FormatStatus.INVALID_FORMAT

    def test_rules(self) -> None:
        result = check_format(CitationType.RULE, {"code": "Fed. R. Civ. P."})

        assert result.format_status == FormatStatus.VALID_FORMAT

    def test_unknown_type(self) -> None:
        result = check_format(CitationType.UNKNOWN, {})

        assert result.format_status == FormatStatus.AMBIGUOUS_FORMAT
        assert result.confidence == 0.5


# ============================================================================
# Marker Tests
# ============================================================================


class TestMarkers:
    """Tests for citation marker parsing and insertion."""

    def test_parse_single_marker(self) -> None:
        text = "See [CITATION:cit_001]Smith[/CITATION:cit_001] here."

        plain, spans = parse_markers(text)

        assert plain == "See Smith here."
        assert spans == [MarkedSpan(citation_id="cit_001", start=4, end=9)]

    def test_insert_restores_marked_text(self) -> None:
        text = "A [CITATION:cit_001]x[/CITATION:cit_001] b [CITATION:cit_002]y[/CITATION:cit_002]."

        plain, spans = parse_markers(text)

        assert insert_markers(plain, spans) == text

    def test_text_without_markers(self) -> None:
        plain, spans = parse_markers("Nothing marked here.")

        assert plain == "Nothing marked here."
        assert spans == []

    @pytest.mark.parametrize(
        "text",
        [
            "[CITATION:abc]x[/CITATION:abc]",
            "[CITATION:cit_001]x",
            "[CITATION:cit_001][CITATION:cit_002]x[/CITATION:cit_002][/CITATION:cit_001]",
            "[CITATION:cit_001]x[/CITATION:cit_002]",
            "[CITATION:cit_001]x[/CITATION:cit_001] [CITATION:cit_001]y[/CITATION:cit_001]",
            "Broken [CITATION:cit_001 marker",
        ],
    )
    def test_malformed_markers_rejected(self, text: str) -> None:
        """Test malformed, unclosed, nested, mismatched and duplicate markers."""
        with pytest.raises(ValidationInputError):
            parse_markers(text)

    def test_strip_markers_removes_fragments(self) -> None:
        text = "See [CITATION:cit_001]Smith[/CITATION:cit_001] and [CITATION:cit_00"

        assert strip_markers(text) == "See Smith and "

    def test_normalize_text(self) -> None:
        assert normalize_text("  See [CITATION:cit_001]Smith[/CITATION:cit_001]\n here ") == (
            "See Smith here"
        )

    def test_citation_ids(self) -> None:
        assert format_citation_id(7) == "cit_007"
        assert format_citation_id(1234) == "cit_1234"
        assert citation_number("cit_042") == 42
        assert citation_number("c42") is None


# ============================================================================
# Identified Document Tests
# ============================================================================


class TestIdentifiedDocument:
    """Tests for a document after identification."""

    def test_citation_ids_are_sequential(self, identified_document: CitationDocument) -> None:
        assert [c.id for c in identified_document.citations] == [
            "cit_001", "cit_002", "cit_003", "cit_004", "cit_005", "cit_006",
        ]
        assert identified_document.max_citation_number() == 6

    def test_markers_wrap_citation_text(self, identified_document: CitationDocument) -> None:
        paragraph = identified_document.content[0]

        assert (
            "[CITATION:cit_002]Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)[/CITATION:cit_002]"
            in paragraph.text
        )
        assert strip_markers(paragraph.text) == PARAGRAPH_TEXTS[0]

    def test_tier1_recorded(self, identified_document: CitationDocument) -> None:
        for citation in identified_document.citations:
            assert citation.tier_1 is not None
            assert citation.tier_1.format_status == FormatStatus.VALID_FORMAT

    def test_citations_in_paragraph(self, identified_document: CitationDocument) -> None:
        assert [c.id for c in identified_document.citations_in("p2")] == ["cit_003", "cit_004"]


# ============================================================================
# Context Extraction Tests
# ============================================================================


class TestContextExtraction:
    """Tests for citation context windows."""

    def test_split_sentences_keeps_abbreviations(self) -> None:
        sentences = split_sentences(
            "See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020). Next sentence here."
        )

        assert sentences == [
            "See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020).",
            "Next sentence here.",
        ]

    def test_first_paragraph_has_no_preceding_text(
        self, identified_document: CitationDocument
    ) -> None:
        citation = identified_document.citation("cit_001")

        assert extract_context(identified_document, citation) == PARAGRAPH_TEXTS[0]

    def test_includes_tail_of_previous_paragraph(
        self, identified_document: CitationDocument
    ) -> None:
        """Test the last two sentences of the previous paragraph are prepended."""
        citation = identified_document.citation("cit_003")

        context = extract_context(identified_document, citation)

        assert context.startswith("The Ninth Circuit has addressed this question.")
        assert "Plaintiff brings this action" not in context
        assert context.endswith(PARAGRAPH_TEXTS[1])
        assert "[CITATION:" not in context

    def test_without_preceding(self, identified_document: CitationDocument) -> None:
        citation = identified_document.citation("cit_003")

        context = extract_context(identified_document, citation, include_preceding=False)

        assert context == PARAGRAPH_TEXTS[1]

    def test_missing_paragraph(self, identified_document: CitationDocument) -> None:
        citation = identified_document.citation("cit_001").model_copy(
            update={"id": "cit_099", "paragraph_id": "p_missing"}
        )

        assert extract_context(identified_document, citation) == ""

    def test_extract_contexts(self, identified_document: CitationDocument) -> None:
        contexts = extract_contexts(identified_document, identified_document.citations)

        assert set(contexts) == {c.id for c in identified_document.citations}
        assert all(contexts.values())
