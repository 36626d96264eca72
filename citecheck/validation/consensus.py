"""
Consensus Calculator.

Pure aggregation of a panel's verdicts into one consensus record. Only
successful verdicts count. The same verdicts always produce the same
consensus (no clocks, no randomness, fixed rounding), so Tier 2 can be
re-run without side effects.

Score panels escalate on either signal: a mean in the moderate band, or a
spread above the dispersion threshold. A high mean with one outlier agent
still goes to Tier 3.
"""

import math
from collections import Counter
from collections.abc import Sequence

from citecheck.errors import QuorumError, ValidationInputError
from citecheck.validation.schemas import (
    AgreementLevel,
    Consensus,
    InsufficientQuorumConsensus,
    LabelVerdict,
    PanelVerdict,
    RiskConsensus,
    RiskLevel,
    RiskVerdict,
    ScoreConsensus,
    ScoreVerdict,
    TriggerReason,
    Verdict,
    VerdictConsensus,
)

LOW_RISK_THRESHOLD = 8.0
MODERATE_RISK_THRESHOLD = 5.0
HIGH_AGREEMENT_STD = 1.0
MODERATE_AGREEMENT_STD = 2.0
DEFAULT_DISPERSION_THRESHOLD = 2.0
STRONG_AGREEMENT_RATIO = 0.8

VERDICT_TO_RISK = {
    Verdict.VALID: RiskLevel.LOW_RISK,
    Verdict.UNCERTAIN: RiskLevel.MODERATE_RISK,
    Verdict.INVALID: RiskLevel.NEEDS_ADDITIONAL_REVIEW,
}


def score_recommendation(average_score: float) -> RiskLevel:
    """Bucket an average score: [8, 10] low, [5, 8) moderate, [0, 5) needs review."""
    if average_score >= LOW_RISK_THRESHOLD:
        return RiskLevel.LOW_RISK
    if average_score >= MODERATE_RISK_THRESHOLD:
        return RiskLevel.MODERATE_RISK
    return RiskLevel.NEEDS_ADDITIONAL_REVIEW


def score_agreement(standard_deviation: float) -> AgreementLevel:
    if standard_deviation <= HIGH_AGREEMENT_STD:
        return AgreementLevel.HIGH
    if standard_deviation <= MODERATE_AGREEMENT_STD:
        return AgreementLevel.MODERATE
    return AgreementLevel.LOW


def vote_agreement(top_count: int, total: int) -> AgreementLevel:
    if top_count == total:
        return AgreementLevel.UNANIMOUS
    if top_count / total >= STRONG_AGREEMENT_RATIO:
        return AgreementLevel.STRONG
    if top_count * 2 > total:
        return AgreementLevel.MAJORITY
    return AgreementLevel.SPLIT


class ConsensusCalculator:
    """
    Aggregate panel verdicts into a consensus.

    Usage:
        calculator = ConsensusCalculator(min_quorum=3, dispersion_threshold=2.0)
        consensus = calculator.calculate(verdicts)
    """

    def __init__(
        self,
        min_quorum: int = 3,
        dispersion_threshold: float = DEFAULT_DISPERSION_THRESHOLD,
    ) -> None:
        if min_quorum < 1:
            raise ValueError("min_quorum must be at least 1")
        self.min_quorum = min_quorum
        self.dispersion_threshold = dispersion_threshold

    def calculate(self, verdicts: Sequence[PanelVerdict]) -> Consensus:
        """
        Compute the consensus for one tier of one citation.

        Args:
            verdicts: Every panel slot, failed ones included

        Returns:
            Score, verdict or risk consensus; an insufficient-quorum record
            when fewer than ``min_quorum`` agents succeeded

        Raises:
            ValidationInputError: If successful verdicts mix output forms
        """
        successful = [v for v in verdicts if v.succeeded]
        failed = len(verdicts) - len(successful)

        try:
            self.check_quorum(len(successful))
        except QuorumError as e:
            return InsufficientQuorumConsensus(
                agreement_level=AgreementLevel.NONE,
                recommendation=RiskLevel.NEEDS_ADDITIONAL_REVIEW,
                reasoning=f"{e}; defaulting to additional review",
                tier_3_trigger=False,
                successful_agents=len(successful),
                failed_agents=failed,
                required_quorum=self.min_quorum,
            )

        kinds = {v.kind for v in successful}
        if len(kinds) > 1:
            raise ValidationInputError(f"Cannot combine verdict forms: {sorted(kinds)}")

        match successful[0]:
            case ScoreVerdict():
                return self._score_consensus(successful, failed)  # type: ignore[arg-type]
            case LabelVerdict():
                return self._verdict_consensus(successful, failed)  # type: ignore[arg-type]
            case RiskVerdict():
                return self._risk_consensus(successful, failed)  # type: ignore[arg-type]

        raise ValidationInputError(f"Unsupported verdict form: {successful[0].kind}")

    def check_quorum(self, successful: int) -> None:
        """
        Raises:
            QuorumError: If fewer than ``min_quorum`` agents succeeded
        """
        if successful < self.min_quorum:
            raise QuorumError(successful, self.min_quorum)

    # ========================================================================
    # Score Panels
    # ========================================================================

    def _score_consensus(self, verdicts: list[ScoreVerdict], failed: int) -> ScoreConsensus:
        scores = [v.score for v in verdicts]
        count = len(scores)

        mean = math.fsum(scores) / count
        variance = math.fsum((s - mean) ** 2 for s in scores) / count
        average_score = round(mean, 4)
        variance = round(variance, 4)
        standard_deviation = round(math.sqrt(variance), 4)

        recommendation = score_recommendation(average_score)
        agreement = score_agreement(standard_deviation)

        reasons: list[TriggerReason] = []
        if recommendation == RiskLevel.MODERATE_RISK:
            reasons.append(TriggerReason.MODERATE_BAND)
        if standard_deviation > self.dispersion_threshold:
            reasons.append(TriggerReason.HIGH_DISPERSION)

        reasoning = (
            f"Average score {average_score:.2f} from {count} agents "
            f"(std dev {standard_deviation:.2f}, {agreement.value} agreement)"
        )
        if reasons:
            reasoning += "; escalating: " + ", ".join(r.value for r in reasons)

        return ScoreConsensus(
            agreement_level=agreement,
            recommendation=recommendation,
            reasoning=reasoning,
            tier_3_trigger=bool(reasons),
            successful_agents=count,
            failed_agents=failed,
            average_score=average_score,
            standard_deviation=standard_deviation,
            variance=variance,
            scores=scores,
            trigger_reasons=reasons,
        )

    # ========================================================================
    # Legacy Verdict Panels
    # ========================================================================

    def _verdict_consensus(self, verdicts: list[LabelVerdict], failed: int) -> VerdictConsensus:
        counts = Counter(v.verdict for v in verdicts)
        verdict_counts = {verdict: counts.get(verdict, 0) for verdict in Verdict}

        top_count = max(counts.values())
        leaders = [verdict for verdict in Verdict if counts.get(verdict, 0) == top_count]
        majority = leaders[0] if len(leaders) == 1 else Verdict.UNCERTAIN

        total = len(verdicts)
        agreement = vote_agreement(top_count, total)
        unanimous = agreement == AgreementLevel.UNANIMOUS

        summary = ", ".join(f"{v.value}={n}" for v, n in verdict_counts.items() if n)
        reasoning = f"Majority {majority.value} ({summary})"
        if len(leaders) > 1:
            reasoning += "; tie resolved to UNCERTAIN"

        return VerdictConsensus(
            agreement_level=agreement,
            recommendation=VERDICT_TO_RISK[majority],
            reasoning=reasoning,
            tier_3_trigger=not unanimous,
            successful_agents=total,
            failed_agents=failed,
            verdict_counts=verdict_counts,
            majority_verdict=majority,
            confidence_score=round(top_count / total, 4),
        )

    # ========================================================================
    # Tier-3 Risk Panels
    # ========================================================================

    def _risk_consensus(self, verdicts: list[RiskVerdict], failed: int) -> RiskConsensus:
        counts = Counter(v.risk_level for v in verdicts)
        risk_level_counts = {level: counts.get(level, 0) for level in RiskLevel}

        top_count = max(counts.values())
        leaders = [level for level in RiskLevel if counts.get(level, 0) == top_count]
        final_risk_level = max(leaders, key=lambda level: level.severity)

        total = len(verdicts)
        agreement = vote_agreement(top_count, total)

        summary = ", ".join(f"{level.value}={n}" for level, n in risk_level_counts.items() if n)
        reasoning = f"Investigation panel: {final_risk_level.value} ({summary})"
        if len(leaders) > 1:
            reasoning += "; tie resolved to the more severe level"

        return RiskConsensus(
            agreement_level=agreement,
            recommendation=final_risk_level,
            reasoning=reasoning,
            tier_3_trigger=False,
            successful_agents=total,
            failed_agents=failed,
            risk_level_counts=risk_level_counts,
            final_risk_level=final_risk_level,
        )
