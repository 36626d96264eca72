"""
Panel Agents.

A panel agent turns (citation, context) into one verdict. Agents are
black-box scorers: the LLM-backed implementation prompts a LlamaIndex LLM
and parses its answer, but anything satisfying ``PanelAgent`` can sit on a
panel (tests use scripted agents).
"""

import time
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from citecheck.errors import AgentError
from citecheck.identification.schemas import Citation
from citecheck.utils.llm_factory import ValidationTier
from citecheck.utils.logger import get_logger
from citecheck.validation.prompts import (
    TIER2_PROFILES,
    TIER3_PROFILES,
    AgentProfile,
    build_tier2_prompt,
    build_tier3_prompt,
)
from citecheck.validation.response_parser import (
    ResponseParseError,
    parse_risk_response,
    parse_score_response,
    parse_verdict_response,
)
from citecheck.validation.schemas import (
    CaseLink,
    LabelVerdict,
    PanelVerdict,
    RiskVerdict,
    ScoreVerdict,
    Tier2Result,
)
from citecheck.validation.token_tracking import extract_token_usage

logger = get_logger(__name__)


class OutputForm(str, Enum):
    """What an agent is asked to return."""

    SCORE = "score"
    VERDICT = "verdict"
    RISK = "risk"


@runtime_checkable
class PanelAgent(Protocol):
    """Anything that can sit on a validation panel."""

    agent_id: str

    async def evaluate(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None = None,
        case_links: list[CaseLink] | None = None,
    ) -> PanelVerdict:
        """Return a successful verdict or raise; failures become failed verdicts upstream."""
        ...


# ============================================================================
# LLM Panel Agent
# ============================================================================


class LLMPanelAgent:
    """
    Panel agent backed by a LlamaIndex LLM.

    Usage:
        agent = LLMPanelAgent(TIER2_PROFILES[0], OutputForm.SCORE)
        verdict = await agent.evaluate(citation, context)
    """

    def __init__(
        self,
        profile: AgentProfile,
        output_form: OutputForm,
        tier: ValidationTier = ValidationTier.TIER_2,
        llm: Any = None,
    ) -> None:
        """
        Initialize the agent.

        Args:
            profile: Role and focus used to build the prompt
            output_form: Score, legacy verdict or Tier-3 risk output
            tier: Tier whose configured model the agent uses
            llm: Optional LLM instance (defaults to the tier's configured LLM)
        """
        self.profile = profile
        self.agent_id = profile.agent_id
        self.output_form = output_form
        self.tier = tier
        self._llm = llm

    @property
    def llm(self) -> Any:
        """Get LLM instance."""
        if self._llm is None:
            from citecheck.utils.llm_factory import get_llm
            self._llm = get_llm(self.tier)
        return self._llm

    @property
    def model_name(self) -> str:
        model = getattr(self.llm, "model", None)
        if isinstance(model, str):
            return model
        try:
            return self.llm.metadata.model_name
        except AttributeError:
            return "unknown"

    @property
    def provider(self) -> str:
        class_name = getattr(self.llm, "class_name", None)
        return class_name() if callable(class_name) else type(self.llm).__name__

    def build_prompt(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None = None,
        case_links: list[CaseLink] | None = None,
    ) -> str:
        if self.output_form == OutputForm.RISK:
            return build_tier3_prompt(self.profile, citation, context, tier2, case_links or [])
        return build_tier2_prompt(
            self.profile,
            citation,
            context,
            verdict_form=self.output_form == OutputForm.VERDICT,
        )

    async def evaluate(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None = None,
        case_links: list[CaseLink] | None = None,
    ) -> PanelVerdict:
        """
        Ask the LLM for this agent's verdict on a citation.

        Args:
            citation: Citation under review
            context: Surrounding document text
            tier2: Tier-2 result (Tier-3 agents only)
            case_links: Case-law evidence (Tier-3 agents only)

        Returns:
            Score, label or risk verdict depending on the output form

        Raises:
            AgentError: If the response cannot be parsed
        """
        prompt = self.build_prompt(citation, context, tier2, case_links)
        started = time.perf_counter()

        response = await self.llm.acomplete(prompt)
        text = response.text.strip()
        duration = round(time.perf_counter() - started, 3)

        model = self.model_name
        usage = extract_token_usage(getattr(response, "raw", None), model, self.provider)

        logger.debug(f"{self.agent_id} answered for {citation.id} in {duration}s")

        try:
            match self.output_form:
                case OutputForm.SCORE:
                    parsed_score = parse_score_response(text)
                    return ScoreVerdict(
                        agent=self.agent_id,
                        model=model,
                        score=parsed_score.score,
                        reasoning=parsed_score.reasoning,
                        usage=usage,
                        duration_seconds=duration,
                    )
                case OutputForm.VERDICT:
                    parsed_verdict = parse_verdict_response(text)
                    return LabelVerdict(
                        agent=self.agent_id,
                        model=model,
                        verdict=parsed_verdict.verdict,
                        reason_code=parsed_verdict.reason_code,
                        reasoning=parsed_verdict.reasoning,
                        usage=usage,
                        duration_seconds=duration,
                    )
                case OutputForm.RISK:
                    parsed_risk = parse_risk_response(text)
                    return RiskVerdict(
                        agent=self.agent_id,
                        model=model,
                        risk_level=parsed_risk.risk_level,
                        reasoning=parsed_risk.reasoning,
                        usage=usage,
                        duration_seconds=duration,
                    )
        except ResponseParseError as e:
            raise AgentError(self.agent_id, f"Unparseable response: {e}") from e

        raise AgentError(self.agent_id, f"Unsupported output form: {self.output_form}")


# ============================================================================
# Panel Builders
# ============================================================================


def build_tier2_panel(verdict_form: bool = False, llm: Any = None) -> list[LLMPanelAgent]:
    """The five-agent Tier-2 screening panel."""
    output_form = OutputForm.VERDICT if verdict_form else OutputForm.SCORE
    return [
        LLMPanelAgent(profile, output_form, ValidationTier.TIER_2, llm)
        for profile in TIER2_PROFILES
    ]


def build_tier3_panel(llm: Any = None) -> list[LLMPanelAgent]:
    """The three-agent Tier-3 investigation panel."""
    return [
        LLMPanelAgent(profile, OutputForm.RISK, ValidationTier.TIER_3, llm)
        for profile in TIER3_PROFILES
    ]
