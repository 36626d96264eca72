"""
Citation Validation Pipeline.

Drives one citation through its escalation stages:

    unvalidated -> tier2_done
    unvalidated -> tier3_triggered -> tier3_done | tier3_failed
    unvalidated -> failed

Every transition goes through ``transition`` and is checked against
``LEGAL_TRANSITIONS``; re-validation resets a citation to ``unvalidated``
first. The pipeline works on copies: it returns an updated citation and
never mutates the one it was given.
"""

from typing import Any

from app.config import PanelMode, Settings
from citecheck.errors import CitationCheckError, ValidationInputError
from citecheck.identification.schemas import Citation
from citecheck.utils.logger import LogContext, get_logger
from citecheck.validation.agents import PanelAgent, build_tier2_panel, build_tier3_panel
from citecheck.validation.consensus import ConsensusCalculator
from citecheck.validation.escalation import (
    CaseLinkLookup,
    CaseLinkSource,
    EscalationInvestigator,
)
from citecheck.validation.panel import PanelEvaluator
from citecheck.validation.schemas import Tier2Result, ValidationStage
from citecheck.validation.token_tracking import aggregate_usage

logger = get_logger(__name__)


class StageTransitionError(CitationCheckError):
    """Raised when a citation is moved between stages illegally."""

    pass


LEGAL_TRANSITIONS: dict[ValidationStage, set[ValidationStage]] = {
    ValidationStage.UNVALIDATED: {
        ValidationStage.TIER2_DONE,
        ValidationStage.TIER3_TRIGGERED,
        ValidationStage.FAILED,
    },
    ValidationStage.TIER2_DONE: {
        ValidationStage.TIER3_TRIGGERED,
        ValidationStage.UNVALIDATED,
    },
    ValidationStage.TIER3_TRIGGERED: {
        ValidationStage.TIER3_DONE,
        ValidationStage.TIER3_FAILED,
        ValidationStage.UNVALIDATED,
    },
    ValidationStage.TIER3_DONE: {ValidationStage.UNVALIDATED},
    ValidationStage.TIER3_FAILED: {
        ValidationStage.TIER3_TRIGGERED,
        ValidationStage.UNVALIDATED,
    },
    ValidationStage.FAILED: {ValidationStage.UNVALIDATED},
}


def transition(citation: Citation, stage: ValidationStage, **updates: Any) -> Citation:
    """
    Move a citation to a new stage, returning an updated copy.

    Raises:
        StageTransitionError: If the move is not in ``LEGAL_TRANSITIONS``
    """
    if stage not in LEGAL_TRANSITIONS[citation.stage]:
        raise StageTransitionError(
            f"{citation.id}: illegal transition {citation.stage.value} -> {stage.value}"
        )
    return citation.model_copy(update={"stage": stage, **updates})


def reset(citation: Citation) -> Citation:
    """Clear both tiers' results so the citation can be validated again."""
    if citation.stage == ValidationStage.UNVALIDATED:
        return citation.model_copy(update={
            "validation": None,
            "tier_3": None,
            "validation_error": None,
            "tier_3_error": None,
        })
    return transition(
        citation,
        ValidationStage.UNVALIDATED,
        validation=None,
        tier_3=None,
        validation_error=None,
        tier_3_error=None,
    )


def mark_failed(citation: Citation, error: str) -> Citation:
    """Record an error that stopped validation of a citation."""
    if citation.stage == ValidationStage.TIER3_TRIGGERED:
        return transition(citation, ValidationStage.TIER3_FAILED, tier_3_error=error)
    return transition(reset(citation), ValidationStage.FAILED, validation_error=error)


class CitationValidator:
    """
    Tier 2 and conditional Tier 3 for one citation.

    Usage:
        validator = CitationValidator.from_settings(settings)
        updated = await validator.validate(citation, context)
    """

    def __init__(
        self,
        tier2_evaluator: PanelEvaluator,
        tier2_calculator: ConsensusCalculator,
        investigator: EscalationInvestigator,
    ) -> None:
        self.tier2_evaluator = tier2_evaluator
        self.tier2_calculator = tier2_calculator
        self.investigator = investigator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tier2_agents: list[PanelAgent] | None = None,
        tier3_agents: list[PanelAgent] | None = None,
        case_lookup: CaseLinkSource | None = None,
    ) -> "CitationValidator":
        """
        Wire the default panels, calculators and case lookup from settings.

        Args:
            settings: Application settings
            tier2_agents: Override for the Tier-2 panel
            tier3_agents: Override for the Tier-3 panel
            case_lookup: Override for the case-link source
        """
        if tier2_agents is None:
            tier2_agents = build_tier2_panel(verdict_form=settings.panel_mode == PanelMode.VERDICT)
        if tier3_agents is None:
            tier3_agents = build_tier3_panel()
        if case_lookup is None and settings.case_lookup_enabled:
            case_lookup = CaseLinkLookup(
                api_url=settings.courtlistener_api_url,
                api_token=settings.courtlistener_api_token,
            )

        def evaluator(agents: list[PanelAgent]) -> PanelEvaluator:
            return PanelEvaluator(
                agents,
                timeout_seconds=settings.agent_timeout_seconds,
                max_attempts=settings.agent_max_retries,
            )

        return cls(
            tier2_evaluator=evaluator(tier2_agents),
            tier2_calculator=ConsensusCalculator(
                min_quorum=min(settings.tier2_min_quorum, len(tier2_agents)),
                dispersion_threshold=settings.dispersion_threshold,
            ),
            investigator=EscalationInvestigator(
                evaluator=evaluator(tier3_agents),
                calculator=ConsensusCalculator(
                    min_quorum=min(settings.tier3_min_quorum, len(tier3_agents)),
                ),
                case_lookup=case_lookup,
            ),
        )

    async def run_tier2(self, citation: Citation, context: str) -> Citation:
        """
        Run the Tier-2 panel and consensus.

        Args:
            citation: Citation to evaluate (any stage; it is reset first)
            context: Surrounding document text

        Returns:
            Copy in ``tier2_done``, ``tier3_triggered`` or ``failed``
        """
        citation = reset(citation)

        with LogContext(logger, citation_id=citation.id):
            verdicts = await self.tier2_evaluator.evaluate(citation, context)

            try:
                consensus = self.tier2_calculator.calculate(verdicts)
            except ValidationInputError as e:
                logger.error(f"Tier 2 consensus failed for {citation.id}: {e}")
                return transition(citation, ValidationStage.FAILED, validation_error=str(e))

            result = Tier2Result(
                panel_evaluation=verdicts,
                consensus=consensus,
                total_usage=aggregate_usage([v.usage for v in verdicts]),
            )

            next_stage = (
                ValidationStage.TIER3_TRIGGERED
                if consensus.tier_3_trigger
                else ValidationStage.TIER2_DONE
            )
            logger.info(
                f"Tier 2 for {citation.id}: {consensus.recommendation.value} "
                f"({consensus.kind}, trigger={consensus.tier_3_trigger})"
            )
            return transition(citation, next_stage, validation=result)

    async def run_tier3(self, citation: Citation, context: str, forced: bool = False) -> Citation:
        """
        Run the Tier-3 investigation for a triggered (or forced) citation.

        A failed investigation leaves the Tier-2 record in place and moves
        the citation to ``tier3_failed``.

        Raises:
            StageTransitionError: If Tier 2 has not produced a consensus yet
        """
        if citation.validation is None:
            raise StageTransitionError(f"{citation.id}: Tier 3 requires a Tier-2 consensus")

        if citation.stage in (ValidationStage.TIER2_DONE, ValidationStage.TIER3_FAILED) and forced:
            citation = transition(citation, ValidationStage.TIER3_TRIGGERED)

        if citation.stage != ValidationStage.TIER3_TRIGGERED:
            raise StageTransitionError(
                f"{citation.id}: Tier 3 not triggered (stage {citation.stage.value})"
            )

        with LogContext(logger, citation_id=citation.id):
            try:
                tier3 = await self.investigator.investigate(
                    citation, context, citation.validation, forced=forced
                )
            except Exception as e:
                logger.error(f"Tier 3 failed for {citation.id}: {e}")
                return transition(citation, ValidationStage.TIER3_FAILED, tier_3_error=str(e))

        if not tier3.computed:
            return transition(
                citation,
                ValidationStage.TIER3_FAILED,
                tier_3=tier3,
                tier_3_error=tier3.consensus.reasoning,
            )
        return transition(citation, ValidationStage.TIER3_DONE, tier_3=tier3, tier_3_error=None)

    async def validate(
        self,
        citation: Citation,
        context: str,
        force_tier3: bool = False,
    ) -> Citation:
        """
        Full single-citation path: Tier 2, then Tier 3 when triggered or forced.

        Args:
            citation: Citation to validate
            context: Surrounding document text
            force_tier3: Investigate even when Tier 2 did not escalate

        Returns:
            Updated copy of the citation
        """
        citation = await self.run_tier2(citation, context)

        if citation.stage == ValidationStage.TIER3_TRIGGERED or (
            force_tier3 and citation.stage == ValidationStage.TIER2_DONE
        ):
            citation = await self.run_tier3(citation, context, forced=force_tier3)

        return citation
