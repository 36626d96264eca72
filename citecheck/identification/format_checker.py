"""
Tier-1 Format Checker.

Deterministic check of a detected citation's structure against lookup tables
of federal reporters, courts, codes and rules. This is a format check only;
whether the authority exists and supports the proposition is left to the
Tier-2 and Tier-3 panels.
"""

from datetime import datetime

from citecheck.identification.schemas import (
    CitationType,
    FormatStatus,
    Tier1Result,
)

# ============================================================================
# Lookup Tables
# ============================================================================

FEDERAL_REPORTERS = {
    # Supreme Court
    "U.S.", "S. Ct.", "L. Ed.", "L. Ed. 2d", "U.S.L.W.",
    # Courts of appeals
    "F.", "F.2d", "F.3d", "F.4th", "F. App'x", "Fed. Appx.",
    # District courts
    "F. Supp.", "F. Supp. 2d", "F. Supp. 3d", "F.R.D.", "B.R.",
    # Specialised
    "Fed. Cl.", "Ct. Cl.", "Vet. App.", "M.J.", "T.C.", "Ct. Int'l Trade",
    "WL",
}

FEDERAL_COURTS = {
    # Supreme Court (reporter implies the court)
    "", "U.S.", "S. Ct.",
    # Circuits
    "1st Cir.", "2d Cir.", "3d Cir.", "4th Cir.", "5th Cir.", "6th Cir.",
    "7th Cir.", "8th Cir.", "9th Cir.", "10th Cir.", "11th Cir.",
    "D.C. Cir.", "Fed. Cir.",
    # Specialised
    "Fed. Cl.", "Ct. Cl.", "T.C.", "B.A.P. 9th Cir.", "C.A.A.F.",
}

# District court abbreviations follow "[N.|S.|E.|W.|C.|M.]D. <State>"
DISTRICT_PREFIXES = ("D.", "N.D.", "S.D.", "E.D.", "W.D.", "C.D.", "M.D.")

STATE_ABBREVIATIONS = {
    "Ala.", "Alaska", "Ariz.", "Ark.", "Cal.", "Colo.", "Conn.", "Del.",
    "D.C.", "Fla.", "Ga.", "Haw.", "Idaho", "Ill.", "Ind.", "Iowa", "Kan.",
    "Ky.", "La.", "Me.", "Md.", "Mass.", "Mich.", "Minn.", "Miss.", "Mo.",
    "Mont.", "Neb.", "Nev.", "N.H.", "N.J.", "N.M.", "N.Y.", "N.C.", "N.D.",
    "Ohio", "Okla.", "Or.", "Pa.", "R.I.", "S.C.", "S.D.", "Tenn.", "Tex.",
    "Utah", "Vt.", "Va.", "Wash.", "W. Va.", "Wis.", "Wyo.", "P.R.",
}

FEDERAL_CODES = {
    "U.S.C.", "U.S.C. Supp.", "C.F.R.", "Rev. Stat.",
}

FEDERAL_RULES = {
    "Fed. R. Civ. P.", "Fed. R. Crim. P.", "Fed. R. Evid.", "Fed. R. App. P.",
    "Fed. R. Bankr. P.", "Local Rule",
}

EARLIEST_REPORTED_YEAR = 1789


def _normalize(value: str) -> str:
    return " ".join(value.split()).lower()


_REPORTERS = {_normalize(r) for r in FEDERAL_REPORTERS}
_COURTS = {_normalize(c) for c in FEDERAL_COURTS}
_STATES = {_normalize(s) for s in STATE_ABBREVIATIONS}
_CODES = {_normalize(c) for c in FEDERAL_CODES}
_RULES = {_normalize(r) for r in FEDERAL_RULES}


# ============================================================================
# Checks
# ============================================================================


def is_known_reporter(reporter: str) -> bool:
    return _normalize(reporter) in _REPORTERS


def is_known_court(court: str) -> bool:
    """Circuit, specialised or district court abbreviation."""
    normalized = _normalize(court)
    if normalized in _COURTS:
        return True

    for prefix in DISTRICT_PREFIXES:
        prefix = _normalize(prefix)
        if normalized.startswith(prefix + " ") and normalized[len(prefix) + 1:] in _STATES:
            return True
    return False


def check_format(
    citation_type: CitationType,
    components: dict[str, str],
    current_year: int | None = None,
) -> Tier1Result:
    """
    Run the Tier-1 format check for a detected citation.

    Args:
        citation_type: Detected citation type
        components: Structural components extracted by the identifier
        current_year: Override for the upper year bound (defaults to now)

    Returns:
        Tier1Result with status, confidence and the issues found
    """
    year_limit = (current_year or datetime.now().year) + 1

    match citation_type:
        case CitationType.CASE:
            issues: list[str] = []
            if not is_known_reporter(components.get("reporter", "")):
                issues.append(f"Unknown reporter: {components.get('reporter', '')}")
            if not is_known_court(components.get("court", "")):
                issues.append(f"Unknown court: {components.get('court', '')}")

            year_text = components.get("year", "")
            year_ok = year_text.isdigit() and EARLIEST_REPORTED_YEAR <= int(year_text) <= year_limit

            if not issues and year_ok:
                return Tier1Result(format_status=FormatStatus.VALID_FORMAT, confidence=0.99)
            if issues:
                return Tier1Result(
                    format_status=FormatStatus.INVALID_FORMAT,
                    confidence=0.85,
                    issues=issues,
                )
            return Tier1Result(
                format_status=FormatStatus.AMBIGUOUS_FORMAT,
                confidence=0.70,
                issues=[f"Implausible year: {year_text}"],
            )

        case CitationType.STATUTE | CitationType.REGULATION:
            code = components.get("code", "")
            if _normalize(code) in _CODES:
                return Tier1Result(format_status=FormatStatus.VALID_FORMAT, confidence=0.98)
            return Tier1Result(
                format_status=FormatStatus.INVALID_FORMAT,
                confidence=0.80,
                issues=[f"Unknown code: {code}"],
            )

        case CitationType.RULE:
            code = components.get("code", "")
            if _normalize(code) in _RULES:
                return Tier1Result(format_status=FormatStatus.VALID_FORMAT, confidence=0.99)
            return Tier1Result(
                format_status=FormatStatus.INVALID_FORMAT,
                confidence=0.75,
                issues=[f"Unknown rule set: {code}"],
            )

        case _:
            return Tier1Result(
                format_status=FormatStatus.AMBIGUOUS_FORMAT,
                confidence=0.50,
                issues=["Unrecognised citation type"],
            )
