"""
Escalation Investigator - Tier 3.

Runs a second, independent panel over citations the Tier-2 consensus flagged
(or that a user forced). Investigation agents get more to work with than the
screening panel: the Tier-2 summary and case-link evidence looked up in
CourtListener. When the investigation panel reaches quorum its final risk
level supersedes Tier 2 for display; the Tier-2 record is never modified.
"""

from typing import Protocol

import httpx

from citecheck.errors import ValidationInputError
from citecheck.identification.schemas import Citation, CitationType
from citecheck.utils.logger import get_logger
from citecheck.validation.consensus import ConsensusCalculator
from citecheck.validation.panel import PanelEvaluator
from citecheck.validation.schemas import (
    RISK_TO_STATUS,
    CaseLink,
    RiskConsensus,
    Tier2Result,
    Tier3Result,
)
from citecheck.validation.token_tracking import aggregate_usage

logger = get_logger(__name__)

COURTLISTENER_BASE_URL = "https://www.courtlistener.com"


# ============================================================================
# Case-Link Lookup
# ============================================================================


class CaseLinkSource(Protocol):
    """Anything that can find case-law evidence for a citation."""

    async def lookup(self, citation: Citation) -> list[CaseLink]:
        ...


class CaseLinkLookup:
    """
    Look up case citations with the CourtListener citation-lookup API.

    Lookups never raise: an unavailable service yields a ``found=False``
    link carrying the error, and Tier 3 proceeds on the remaining evidence.

    Usage:
        lookup = CaseLinkLookup(api_url, api_token="...")
        links = await lookup.lookup(citation)
    """

    def __init__(
        self,
        api_url: str,
        api_token: str = "",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the lookup.

        Args:
            api_url: Citation lookup endpoint
            api_token: CourtListener API token; lookups are skipped when empty
            timeout: Request timeout in seconds
            client: Optional pre-configured client (shared or for testing)
        """
        self.api_url = api_url
        self.api_token = api_token
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_token) or self._client is not None

    async def lookup(self, citation: Citation) -> list[CaseLink]:
        """
        Find case-law matches for a citation.

        Args:
            citation: Citation to look up (only case citations are searched)

        Returns:
            One CaseLink per citation string the service recognised
        """
        if citation.citation_type != CitationType.CASE or not self.enabled:
            return []

        headers = {"Authorization": f"Token {self.api_token}"} if self.api_token else {}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, data={"text": citation.citation_text}, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.api_url, data={"text": citation.citation_text}, headers=headers
                    )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Case-link lookup failed for {citation.id}: {e}")
            return [CaseLink(citation=citation.citation_text, found=False, note=f"Lookup failed: {e}")]

        return self._parse_results(citation, payload)

    @staticmethod
    def _parse_results(citation: Citation, payload: object) -> list[CaseLink]:
        if not isinstance(payload, list):
            return [CaseLink(citation=citation.citation_text, found=False, note="Unexpected response")]

        links: list[CaseLink] = []
        for item in payload:
            if not isinstance(item, dict):
                continue

            cited = str(item.get("citation") or citation.citation_text)
            clusters = item.get("clusters") or []

            if item.get("status") != 200 or not clusters:
                links.append(CaseLink(
                    citation=cited,
                    found=False,
                    note=item.get("error_message") or f"status {item.get('status')}",
                ))
                continue

            for cluster in clusters:
                absolute_url = cluster.get("absolute_url")
                links.append(CaseLink(
                    citation=cited,
                    found=True,
                    case_name=cluster.get("case_name"),
                    court=cluster.get("court") or cluster.get("court_id"),
                    date_filed=cluster.get("date_filed"),
                    url=f"{COURTLISTENER_BASE_URL}{absolute_url}" if absolute_url else None,
                ))

        if not links:
            links.append(CaseLink(citation=citation.citation_text, found=False, note="No match"))
        return links


# ============================================================================
# Escalation Investigator
# ============================================================================


class EscalationInvestigator:
    """
    Tier-3 investigation of a single citation.

    Usage:
        investigator = EscalationInvestigator(evaluator, ConsensusCalculator(min_quorum=2))
        tier3 = await investigator.investigate(citation, context, citation.validation)
    """

    def __init__(
        self,
        evaluator: PanelEvaluator,
        calculator: ConsensusCalculator,
        case_lookup: CaseLinkSource | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.calculator = calculator
        self.case_lookup = case_lookup

    async def investigate(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None,
        forced: bool = False,
    ) -> Tier3Result:
        """
        Investigate a citation the Tier-2 panel could not settle.

        Args:
            citation: Citation under review
            context: Surrounding document text
            tier2: The citation's Tier-2 result, passed to agents for reference
            forced: Run even though Tier 2 did not trigger escalation

        Returns:
            Tier3Result; ``final_risk_level`` is None when quorum was not met

        Raises:
            ValidationInputError: If Tier 2 did not trigger and ``forced`` is False
        """
        triggered = tier2 is not None and tier2.consensus.tier_3_trigger
        if not (triggered or forced):
            raise ValidationInputError(
                f"Citation {citation.id} was not flagged for Tier 3 investigation"
            )

        case_links = await self.case_lookup.lookup(citation) if self.case_lookup else []

        verdicts = await self.evaluator.evaluate(citation, context, tier2, case_links)
        consensus = self.calculator.calculate(verdicts)

        final_risk_level = None
        final_status = None
        if isinstance(consensus, RiskConsensus):
            final_risk_level = consensus.final_risk_level
            final_status = RISK_TO_STATUS[final_risk_level]

        if final_risk_level is None:
            logger.warning(
                f"Tier 3 for {citation.id} did not reach quorum; keeping Tier-2 status"
            )
        else:
            logger.info(f"Tier 3 for {citation.id}: {final_risk_level.value}")

        return Tier3Result(
            panel_evaluation=verdicts,
            consensus=consensus,
            case_links=case_links,
            final_risk_level=final_risk_level,
            final_status=final_status,
            forced=forced and not triggered,
            total_usage=aggregate_usage([v.usage for v in verdicts]),
        )
