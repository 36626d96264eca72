"""
Panel Evaluator - Single-Blind Agent Fan-Out.

Dispatches a citation and its context to every agent on a panel at once.
Agents never see each other's output. Each call gets retries on transient
errors and an overall timeout; any agent that still fails is recorded as a
failed verdict in its slot rather than aborting the evaluation.
"""

import asyncio
import time
from collections.abc import Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from citecheck.errors import AgentError
from citecheck.identification.schemas import Citation
from citecheck.utils.logger import get_logger
from citecheck.validation.agents import PanelAgent
from citecheck.validation.schemas import (
    CaseLink,
    FailedVerdict,
    PanelVerdict,
    Tier2Result,
)

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def is_transient_error(error: BaseException) -> bool:
    """
    True for rate limits, 5xx responses, timeouts and connection failures.

    SDK errors (OpenAI, Ollama) are recognised by their ``status_code`` or by
    the httpx error they were raised from.
    """
    current: BaseException | None = error
    while current is not None:
        if isinstance(current, AgentError):
            return False
        if isinstance(current, (httpx.TimeoutException, httpx.NetworkError)):
            return True
        if isinstance(current, httpx.HTTPStatusError):
            return current.response.status_code in RETRYABLE_STATUS_CODES
        status_code = getattr(current, "status_code", None)
        if isinstance(status_code, int):
            return status_code in RETRYABLE_STATUS_CODES
        if isinstance(current, (ConnectionError, TimeoutError)):
            return True
        current = current.__cause__
    return False


class PanelEvaluator:
    """
    Run a fixed panel of agents over one citation.

    Usage:
        evaluator = PanelEvaluator(build_tier2_panel(), timeout_seconds=60)
        verdicts = await evaluator.evaluate(citation, context)
    """

    def __init__(
        self,
        agents: Sequence[PanelAgent],
        timeout_seconds: float = 60.0,
        max_attempts: int = 3,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 10.0,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            agents: Panel members, in reporting order
            timeout_seconds: Budget per agent, retries included
            max_attempts: Attempts per agent on transient errors
            retry_wait_min: Minimum backoff between attempts
            retry_wait_max: Maximum backoff between attempts
        """
        if not agents:
            raise ValueError("A panel needs at least one agent")

        self.agents = list(agents)
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max

    @property
    def size(self) -> int:
        return len(self.agents)

    async def evaluate(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None = None,
        case_links: list[CaseLink] | None = None,
    ) -> list[PanelVerdict]:
        """
        Collect one verdict per agent, concurrently.

        Args:
            citation: Citation under review
            context: Surrounding document text
            tier2: Tier-2 result passed to investigation agents
            case_links: Case-law evidence passed to investigation agents

        Returns:
            Verdicts in panel order; failed agents yield FailedVerdict
        """
        verdicts = await asyncio.gather(*(
            self._run_agent(agent, citation, context, tier2, case_links)
            for agent in self.agents
        ))

        failed = sum(1 for v in verdicts if not v.succeeded)
        if failed:
            logger.warning(f"{failed}/{self.size} agents failed for {citation.id}")

        return list(verdicts)

    async def _run_agent(
        self,
        agent: PanelAgent,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None,
        case_links: list[CaseLink] | None,
    ) -> PanelVerdict:
        started = time.perf_counter()

        try:
            return await asyncio.wait_for(
                self._call_with_retry(agent, citation, context, tier2, case_links),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Timed out after {self.timeout_seconds}s"
        except AgentError as e:
            error = e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        logger.warning(f"Agent {agent.agent_id} failed for {citation.id}: {error}")
        return FailedVerdict(
            agent=agent.agent_id,
            error=error,
            duration_seconds=round(time.perf_counter() - started, 3),
        )

    async def _call_with_retry(
        self,
        agent: PanelAgent,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None,
        case_links: list[CaseLink] | None,
    ) -> PanelVerdict:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
            retry=retry_if_exception(is_transient_error),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"Retrying {agent.agent_id} for {citation.id} "
                        f"(attempt {attempt.retry_state.attempt_number})"
                    )
                verdict = await agent.evaluate(citation, context, tier2, case_links)
                if not verdict.succeeded:
                    raise AgentError(agent.agent_id, getattr(verdict, "error", "failed"))

        return verdict
