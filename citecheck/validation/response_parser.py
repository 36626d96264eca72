"""
Agent Response Parser.

Turns raw agent text into structured verdict fields for the three panel
output formats:
- score (current Tier-2 form): ``SCORE: 7`` plus ``REASONING: ...``
- verdict (legacy Tier-2 form): JSON ``{"label": "VALID", ...}`` or text
  carrying VALID / INVALID / UNCERTAIN and an optional reason code
- risk (Tier-3 form): ``RISK_LEVEL: MODERATE_RISK`` plus ``REASONING: ...``
"""

import json
import re

from pydantic import BaseModel, Field

from citecheck.validation.schemas import RiskLevel, Verdict


class ResponseParseError(Exception):
    """Raised when an agent response cannot be parsed."""

    pass


class ParsedScore(BaseModel):
    score: float = Field(..., ge=0.0, le=10.0)
    reasoning: str = ""


class ParsedVerdict(BaseModel):
    verdict: Verdict
    reason_code: str | None = None
    reasoning: str = ""


class ParsedRisk(BaseModel):
    risk_level: RiskLevel
    reasoning: str = ""


SCORE_PATTERN = re.compile(r"SCORE\s*[:=]?\s*(\d{1,2}(?:\.\d+)?)(?:\s*/\s*10)?", re.IGNORECASE)
REASONING_PATTERN = re.compile(
    r"REASONING\s*:\s*(.*?)(?=\n\s*(?:SCORE|RISK_LEVEL|VERDICT|KEY_EVIDENCE|CONFIDENCE)\s*:|\Z)",
    re.IGNORECASE | re.DOTALL,
)
RISK_LEVEL_PATTERN = re.compile(
    r"RISK[_\s]LEVEL\s*:\s*\**\s*(LOW_RISK|MODERATE_RISK|NEEDS_ADDITIONAL_REVIEW)",
    re.IGNORECASE,
)
REASON_CODE_PATTERN = re.compile(
    r"(?:INVALID|UNCERTAIN|reason|code)\s*[:\-]?\s*([a-z]+(?:_[a-z]+)+)", re.IGNORECASE
)

KNOWN_REASON_CODES = [
    "reporter_court_mismatch",
    "volume_impossible",
    "page_unreasonable",
    "reporter_timing_wrong",
    "year_implausible",
    "temporal_impossibility",
    "anachronistic_issue",
    "historical_mismatch",
    "future_dated",
    "case_type_implausible",
    "characteristics_mismatch",
    "party_role_impossible",
    "inconsistent_with_knowledge",
    "unknown_authority",
    "doctrine_impossible",
    "jurisdiction_mismatch",
    "structural_incoherence",
    "impossible_combination",
]

# Older Tier-3 prompts answered with a verdict instead of a risk level
LEGACY_RISK_VERDICTS = [
    ("LIKELY_FABRICATED", RiskLevel.NEEDS_ADDITIONAL_REVIEW),
    ("NEEDS_HUMAN_REVIEW", RiskLevel.NEEDS_ADDITIONAL_REVIEW),
    ("VERIFIED_REAL", RiskLevel.LOW_RISK),
    ("LIKELY_REAL", RiskLevel.LOW_RISK),
    ("INVALID", RiskLevel.NEEDS_ADDITIONAL_REVIEW),
    ("UNCERTAIN", RiskLevel.MODERATE_RISK),
    ("VALID", RiskLevel.LOW_RISK),
]


def _strip_code_fences(text: str) -> str:
    if "```json" in text:
        return text.split("```json")[1].split("```")[0].strip()
    if "```" in text:
        return text.split("```")[1].split("```")[0].strip()
    return text.strip()


def _load_json_object(text: str) -> dict | None:
    candidate = _strip_code_fences(text)
    match = re.search(r"\{.*\}", candidate, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_reasoning(text: str) -> str:
    """Text after ``REASONING:``, or the whole response when unlabeled."""
    match = REASONING_PATTERN.search(text)
    if match:
        return " ".join(match.group(1).split())
    return " ".join(text.split())[:1000]


def parse_score_response(text: str) -> ParsedScore:
    """
    Parse a score-form response.

    Args:
        text: Raw agent output

    Returns:
        ParsedScore with a score in [0, 10]

    Raises:
        ResponseParseError: If no score in range can be found
    """
    match = SCORE_PATTERN.search(text)
    if match:
        score = float(match.group(1))
        if 0.0 <= score <= 10.0:
            return ParsedScore(score=score, reasoning=extract_reasoning(text))
        raise ResponseParseError(f"Score out of range: {score}")

    data = _load_json_object(text)
    if data is not None and isinstance(data.get("score"), (int, float)):
        score = float(data["score"])
        if 0.0 <= score <= 10.0:
            return ParsedScore(score=score, reasoning=str(data.get("reasoning", "")))
        raise ResponseParseError(f"Score out of range: {score}")

    bare = text.strip()
    if re.fullmatch(r"\d{1,2}(?:\.\d+)?", bare) and float(bare) <= 10.0:
        return ParsedScore(score=float(bare))

    raise ResponseParseError(f"No score found in response: {text[:120]!r}")


def parse_verdict_response(text: str) -> ParsedVerdict:
    """
    Parse a legacy verdict-form response.

    Raises:
        ResponseParseError: If no verdict keyword can be found
    """
    data = _load_json_object(text)
    if data is not None:
        label = str(data.get("label", "")).upper()
        if label in Verdict.__members__:
            reason = str(data.get("reason", "")) or None
            return ParsedVerdict(
                verdict=Verdict(label),
                reason_code=reason[:100] if reason and label != "VALID" else None,
                reasoning=str(data.get("reasoning", data.get("reason", ""))),
            )

    upper = text.upper()
    if re.search(r"\bINVALID\b", upper):
        verdict = Verdict.INVALID
    elif re.search(r"\bUNCERTAIN\b", upper):
        verdict = Verdict.UNCERTAIN
    elif re.search(r"\bVALID\b", upper):
        verdict = Verdict.VALID
    else:
        raise ResponseParseError(f"No verdict found in response: {text[:120]!r}")

    reason_code = None
    if verdict != Verdict.VALID:
        match = REASON_CODE_PATTERN.search(text)
        if match:
            reason_code = match.group(1).lower()
        else:
            lowered = text.lower()
            reason_code = next(
                (
                    code for code in KNOWN_REASON_CODES
                    if code in lowered or code.replace("_", " ") in lowered
                ),
                None,
            )

    return ParsedVerdict(verdict=verdict, reason_code=reason_code, reasoning=extract_reasoning(text))


def parse_risk_response(text: str) -> ParsedRisk:
    """
    Parse a Tier-3 risk-form response, accepting older verdict labels.

    Raises:
        ResponseParseError: If neither a risk level nor a verdict is present
    """
    match = RISK_LEVEL_PATTERN.search(text)
    if match:
        return ParsedRisk(
            risk_level=RiskLevel(match.group(1).upper()),
            reasoning=extract_reasoning(text),
        )

    upper = text.upper()
    for label in RiskLevel:
        if label.value in upper:
            return ParsedRisk(risk_level=label, reasoning=extract_reasoning(text))

    verdict_line = re.search(r"VERDICT\s*:\s*([A-Z_]+)", upper)
    haystack = verdict_line.group(1) if verdict_line else upper
    for label, risk_level in LEGACY_RISK_VERDICTS:
        if re.search(rf"\b{label}\b", haystack):
            return ParsedRisk(risk_level=risk_level, reasoning=extract_reasoning(text))

    raise ResponseParseError(f"No risk level found in response: {text[:120]!r}")
