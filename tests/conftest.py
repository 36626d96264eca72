"""
Pytest Configuration and Fixtures.

Pipeline tests use scripted panel agents (deterministic implementations of
the agent protocol) so consensus, escalation and job behaviour can be
asserted exactly. Tests that need a real model are marked with
``requires_llm()`` and skip when no backend is available:
- Ollama running locally (or OPENAI_API_KEY set)
"""

import asyncio
import os
from pathlib import Path

import pytest

from citecheck.identification.reconciler import ParagraphReconciler
from citecheck.identification.schemas import (
    Citation,
    CitationDocument,
    CitationType,
    Paragraph,
)
from citecheck.service import CheckService
from citecheck.storage.snapshot_store import SnapshotStore
from citecheck.validation.consensus import ConsensusCalculator
from citecheck.validation.escalation import EscalationInvestigator
from citecheck.validation.panel import PanelEvaluator
from citecheck.validation.pipeline import CitationValidator
from citecheck.validation.schemas import (
    CaseLink,
    LabelVerdict,
    PanelVerdict,
    RiskLevel,
    RiskVerdict,
    ScoreVerdict,
    Tier2Result,
    TokenUsage,
    Verdict,
)


# ============================================================================
# Skip Markers
# ============================================================================

def requires_llm():
    """Skip test if LLM is not available."""
    # Check if Ollama is running or OpenAI key is set
    has_openai = bool(os.getenv("OPENAI_API_KEY"))

    # Try to check Ollama availability
    has_ollama = False
    try:
        import httpx
        response = httpx.get("http://localhost:11434/api/tags", timeout=2.0)
        has_ollama = response.status_code == 200
    except Exception:
        pass

    return pytest.mark.skipif(
        not (has_openai or has_ollama),
        reason="Requires LLM backend (Ollama or OpenAI)"
    )


def requires_ollama():
    """Skip test if Ollama is not running."""
    has_ollama = False
    try:
        import httpx
        response = httpx.get("http://localhost:11434/api/tags", timeout=2.0)
        has_ollama = response.status_code == 200
    except Exception:
        pass

    return pytest.mark.skipif(
        not has_ollama,
        reason="Requires Ollama running on localhost:11434"
    )


# ============================================================================
# Scripted Agents
# ============================================================================

class ConcurrencyGauge:
    """Tracks how many agent calls are in flight at once."""

    def __init__(self) -> None:
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        self.current += 1
        self.peak = max(self.peak, self.current)

    def exit(self) -> None:
        self.current -= 1


class ScriptedAgent:
    """
    Deterministic panel agent.

    Returns a score, legacy label or risk level (optionally per citation),
    or raises the configured error. A ``gate`` holds every call until it is
    set; ``escalate_first`` scores the first N calls low enough to escalate.
    """

    def __init__(
        self,
        agent_id: str,
        score: float | None = None,
        verdict: Verdict | None = None,
        risk_level: RiskLevel | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        scores_by_citation: dict[str, float] | None = None,
        gauge: ConcurrencyGauge | None = None,
        gate: asyncio.Event | None = None,
        escalate_first: int = 0,
    ) -> None:
        self.agent_id = agent_id
        self.score = score
        self.verdict = verdict
        self.risk_level = risk_level
        self.error = error
        self.delay = delay
        self.scores_by_citation = scores_by_citation or {}
        self.gauge = gauge
        self.gate = gate
        self.escalate_first = escalate_first
        self.calls: list[str] = []
        self.seen_case_links: list[list[CaseLink]] = []
        self.seen_tier2: list[Tier2Result | None] = []

    async def evaluate(
        self,
        citation: Citation,
        context: str,
        tier2: Tier2Result | None = None,
        case_links: list[CaseLink] | None = None,
    ) -> PanelVerdict:
        self.calls.append(citation.id)
        self.seen_case_links.append(case_links or [])
        self.seen_tier2.append(tier2)

        if self.gauge:
            self.gauge.enter()
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
        finally:
            if self.gauge:
                self.gauge.exit()

        if self.error is not None:
            raise self.error

        usage = TokenUsage(
            input_tokens=100,
            output_tokens=20,
            total_tokens=120,
            provider="scripted",
            model="scripted",
            cost_usd=0.001,
        )

        if self.risk_level is not None:
            return RiskVerdict(
                agent=self.agent_id,
                model="scripted",
                risk_level=self.risk_level,
                reasoning=f"Scripted {self.risk_level.value}",
                usage=usage,
            )
        if self.verdict is not None:
            return LabelVerdict(
                agent=self.agent_id,
                model="scripted",
                verdict=self.verdict,
                reasoning=f"Scripted {self.verdict.value}",
                usage=usage,
            )

        score = self.scores_by_citation.get(citation.id, self.score)
        if len(self.calls) <= self.escalate_first:
            score = 6.0
        return ScoreVerdict(
            agent=self.agent_id,
            model="scripted",
            score=score if score is not None else 9.0,
            reasoning="Scripted score",
            usage=usage,
        )


def score_panel(scores: list[float], **kwargs) -> list[ScriptedAgent]:
    """One scripted agent per score."""
    return [ScriptedAgent(f"agent_{i + 1}", score=s, **kwargs) for i, s in enumerate(scores)]


def risk_panel(levels: list[RiskLevel], **kwargs) -> list[ScriptedAgent]:
    """One scripted Tier-3 agent per risk level."""
    return [
        ScriptedAgent(f"investigator_{i + 1}", risk_level=level, **kwargs)
        for i, level in enumerate(levels)
    ]


FOUND_CASE_LINK = CaseLink(
    citation="123 F.3d 456",
    found=True,
    case_name="Smith v. Jones",
    court="ca9",
    date_filed="2020-03-02",
    url="https://www.courtlistener.com/opinion/1/smith-v-jones/",
)


class StaticCaseLinks:
    """Case-link source returning a fixed answer."""

    def __init__(self, links: list[CaseLink] | None = None) -> None:
        self.links = links or []
        self.calls: list[str] = []

    async def lookup(self, citation: Citation) -> list[CaseLink]:
        self.calls.append(citation.id)
        return list(self.links)


def make_citation(
    citation_id: str = "cit_001",
    text: str = "Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)",
    citation_type: CitationType = CitationType.CASE,
    paragraph_id: str = "p1",
    **updates,
) -> Citation:
    """Standalone citation for unit tests."""
    return Citation(
        id=citation_id,
        citation_text=text,
        citation_type=citation_type,
        paragraph_id=paragraph_id,
        start=0,
        end=len(text),
        **updates,
    )


def make_tier2(scores: list[float], min_quorum: int = 3) -> Tier2Result:
    """Tier-2 result computed from score verdicts."""
    verdicts = [
        ScoreVerdict(agent=f"agent_{i + 1}", score=s) for i, s in enumerate(scores)
    ]
    return Tier2Result(
        panel_evaluation=verdicts,
        consensus=ConsensusCalculator(min_quorum=min_quorum).calculate(verdicts),
    )


def build_validator(
    tier2_agents: list | None = None,
    tier3_agents: list | None = None,
    tier2_quorum: int = 3,
    tier3_quorum: int = 2,
    dispersion_threshold: float = 2.0,
    case_lookup=None,
    timeout_seconds: float = 5.0,
) -> CitationValidator:
    """CitationValidator wired with scripted panels and no retry backoff."""
    tier2_agents = tier2_agents if tier2_agents is not None else score_panel([9, 9, 9, 9, 9])
    tier3_agents = tier3_agents if tier3_agents is not None else risk_panel(
        [RiskLevel.LOW_RISK, RiskLevel.LOW_RISK, RiskLevel.MODERATE_RISK]
    )

    def evaluator(agents: list) -> PanelEvaluator:
        return PanelEvaluator(
            agents,
            timeout_seconds=timeout_seconds,
            max_attempts=2,
            retry_wait_min=0,
            retry_wait_max=0,
        )

    return CitationValidator(
        tier2_evaluator=evaluator(tier2_agents),
        tier2_calculator=ConsensusCalculator(
            min_quorum=tier2_quorum, dispersion_threshold=dispersion_threshold
        ),
        investigator=EscalationInvestigator(
            evaluator=evaluator(tier3_agents),
            calculator=ConsensusCalculator(min_quorum=tier3_quorum),
            case_lookup=case_lookup,
        ),
    )


# ============================================================================
# Document Fixtures
# ============================================================================

PARAGRAPH_TEXTS = [
    (
        "Plaintiff brings this action under 42 U.S.C. § 1983. "
        "The Ninth Circuit has addressed this question. "
        "See Smith v. Jones, 123 F.3d 456 (9th Cir. 2020)."
    ),
    (
        "The court applied Brown v. Board of Education, 347 U.S. 483 (1954). "
        "Defendant also relies on 29 C.F.R. § 1910.1200."
    ),
    (
        "Dismissal is warranted under Fed. R. Civ. P. 12(b)(6). "
        "Accord Doe v. Roe, 55 F.4th 100, 105 (2d Cir. 2022)."
    ),
]


@pytest.fixture
def sample_document() -> CitationDocument:
    """Three plain paragraphs with two citations each, not yet identified."""
    return CitationDocument(
        metadata={"title": "Opposition to Motion to Dismiss", "court": "N.D. Cal."},
        content=[
            Paragraph(id=f"p{i + 1}", text=text, section="Argument")
            for i, text in enumerate(PARAGRAPH_TEXTS)
        ],
    )


@pytest.fixture
def identified_document(sample_document: CitationDocument) -> CitationDocument:
    """The sample document with markers inserted and cit_001..cit_006 identified."""
    reconciler = ParagraphReconciler()
    counter = 1
    content: list[Paragraph] = []
    citations: list[Citation] = []

    for paragraph in sample_document.content:
        result = reconciler.refresh(paragraph, [], counter)
        content.append(result.paragraph)
        citations.extend(result.citations)
        counter = result.next_counter

    return CitationDocument(
        metadata=sample_document.metadata,
        content=content,
        citations=citations,
    )


@pytest.fixture
def many_citations_document() -> CitationDocument:
    """Ten statute citations across five paragraphs."""
    paragraphs = [
        Paragraph(
            id=f"p{i + 1}",
            text=(
                f"The claim arises under {10 + 2 * i} U.S.C. § {100 + i}. "
                f"It is also governed by {11 + 2 * i} U.S.C. § {200 + i}."
            ),
        )
        for i in range(5)
    ]
    reconciler = ParagraphReconciler()
    counter = 1
    content: list[Paragraph] = []
    citations: list[Citation] = []

    for paragraph in paragraphs:
        result = reconciler.refresh(paragraph, [], counter)
        content.append(result.paragraph)
        citations.extend(result.citations)
        counter = result.next_counter

    return CitationDocument(content=content, citations=citations)


# ============================================================================
# Store and Service Fixtures
# ============================================================================

@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    """Temporary directory for snapshot files."""
    path = tmp_path / "snapshots"
    path.mkdir()
    return path


@pytest.fixture
def snapshot_store(snapshot_dir: Path) -> SnapshotStore:
    return SnapshotStore(persist_dir=snapshot_dir)


@pytest.fixture
def validator() -> CitationValidator:
    """Validator whose Tier-2 panel agrees the citation is real."""
    return build_validator()


@pytest.fixture
def service(snapshot_store: SnapshotStore, validator: CitationValidator) -> CheckService:
    return CheckService(store=snapshot_store, validator=validator, concurrency=3)
