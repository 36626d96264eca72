"""
Effective Risk Derivation.

One place decides what risk a citation shows. Precedence:
1. manual review (approved / questionable)
2. Tier-3 final risk level, when the investigation reached quorum
3. Tier-2 consensus recommendation
Citations without a Tier-2 result are unvalidated.
"""

from enum import Enum

from pydantic import BaseModel, Field

from citecheck.identification.schemas import Citation, ManualReviewStatus
from citecheck.validation.schemas import RiskLevel, ValidationStage

MANUAL_REVIEW_RISK = {
    ManualReviewStatus.APPROVED: RiskLevel.LOW_RISK,
    ManualReviewStatus.QUESTIONABLE: RiskLevel.NEEDS_ADDITIONAL_REVIEW,
}


class RiskSource(str, Enum):
    """Which record the effective risk came from."""

    MANUAL_REVIEW = "manual_review"
    TIER_3 = "tier_3"
    TIER_2 = "tier_2"
    NONE = "none"


class EffectiveRisk(BaseModel):
    risk_level: RiskLevel | None = None
    source: RiskSource = RiskSource.NONE


def effective_risk(citation: Citation) -> EffectiveRisk:
    """Risk level to display for a citation and where it came from."""
    if citation.manual_review is not None:
        return EffectiveRisk(
            risk_level=MANUAL_REVIEW_RISK[citation.manual_review.status],
            source=RiskSource.MANUAL_REVIEW,
        )

    if citation.tier_3 is not None and citation.tier_3.final_risk_level is not None:
        return EffectiveRisk(risk_level=citation.tier_3.final_risk_level, source=RiskSource.TIER_3)

    if citation.validation is not None:
        return EffectiveRisk(
            risk_level=citation.validation.consensus.recommendation,
            source=RiskSource.TIER_2,
        )

    return EffectiveRisk()


class RiskSummary(BaseModel):
    """Document-level counts of effective risk."""

    total_citations: int = 0
    low_risk: int = 0
    moderate_risk: int = 0
    needs_additional_review: int = 0
    unvalidated: int = 0
    validation_errors: int = 0
    manual_overrides: int = 0
    escalated: int = 0
    tier3_completed: int = 0
    total_cost_usd: float = 0.0
    by_citation: dict[str, RiskLevel | None] = Field(default_factory=dict)


def summarize_risk(citations: list[Citation]) -> RiskSummary:
    """
    Count citations per effective risk level.

    Args:
        citations: Citations of one document snapshot

    Returns:
        RiskSummary with per-level counts and accounting totals
    """
    summary = RiskSummary(total_citations=len(citations))
    cost = 0.0

    for citation in citations:
        risk = effective_risk(citation)
        summary.by_citation[citation.id] = risk.risk_level

        match risk.risk_level:
            case RiskLevel.LOW_RISK:
                summary.low_risk += 1
            case RiskLevel.MODERATE_RISK:
                summary.moderate_risk += 1
            case RiskLevel.NEEDS_ADDITIONAL_REVIEW:
                summary.needs_additional_review += 1
            case None:
                summary.unvalidated += 1

        if risk.source == RiskSource.MANUAL_REVIEW:
            summary.manual_overrides += 1
        if citation.validation_error or citation.stage == ValidationStage.FAILED:
            summary.validation_errors += 1
        if citation.stage in (
            ValidationStage.TIER3_TRIGGERED,
            ValidationStage.TIER3_DONE,
            ValidationStage.TIER3_FAILED,
        ):
            summary.escalated += 1
        if citation.stage == ValidationStage.TIER3_DONE:
            summary.tier3_completed += 1

        if citation.validation and citation.validation.total_usage:
            cost += citation.validation.total_usage.cost_usd
        if citation.tier_3 and citation.tier_3.total_usage:
            cost += citation.tier_3.total_usage.cost_usd

    summary.total_cost_usd = round(cost, 6)
    return summary
