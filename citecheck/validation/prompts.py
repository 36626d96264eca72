"""
Panel Agent Prompts.

Each panel agent is a role with its own analytical focus. Tier-2 agents see
only the citation and its document context (never another agent's answer).
Tier-3 agents additionally see the Tier-2 consensus summary and any case-link
evidence gathered for the citation.
"""

from dataclasses import dataclass

from citecheck.identification.schemas import Citation
from citecheck.validation.schemas import (
    CaseLink,
    InsufficientQuorumConsensus,
    RiskConsensus,
    ScoreConsensus,
    Tier2Result,
    VerdictConsensus,
)


@dataclass(frozen=True)
class AgentProfile:
    """A panel role: identifier, persona and what it looks at."""

    agent_id: str
    title: str
    persona: str
    focus: tuple[str, ...]


# ============================================================================
# Tier-2 Panel
# ============================================================================

TIER2_PROFILES: tuple[AgentProfile, ...] = (
    AgentProfile(
        agent_id="citation_authority_validator_v1",
        title="Citation Authority Validator",
        persona="You are a legal citation authority validator.",
        focus=(
            "Does this court's output get published in this reporter?",
            "Are the volume and page numbers reasonable for the reporter and year?",
            "Was the reporter in use during the cited year?",
            "Are the numbers realistic rather than nonsensical?",
        ),
    ),
    AgentProfile(
        agent_id="case_ecology_validator_v1",
        title="Case Ecology Validator",
        persona="You are a litigation ecology analyst.",
        focus=(
            "Are the party names plausible litigants for this court?",
            "Would a dispute between these parties be heard in this forum?",
            "Is the party/entity type consistent with the case characteristics?",
        ),
    ),
    AgentProfile(
        agent_id="temporal_reality_validator_v1",
        title="Temporal Reality Validator",
        persona="You are a legal historian checking temporal consistency.",
        focus=(
            "Is the cited year possible for this court and reporter?",
            "Is the citation future-dated or anachronistic for the issue discussed?",
            "Does the surrounding text treat the authority in a time-consistent way?",
        ),
    ),
    AgentProfile(
        agent_id="legal_knowledge_validator_v1",
        title="Legal Knowledge Validator",
        persona="You are a senior research attorney with broad doctrinal knowledge.",
        focus=(
            "Is this authority consistent with what you know of the law?",
            "Is the doctrine attributed to it plausible for this jurisdiction?",
            "Does the proposition in the context fit the cited authority?",
        ),
    ),
    AgentProfile(
        agent_id="reality_assessment_expert_v1",
        title="Reality Assessment Expert",
        persona="You are an expert at spotting fabricated legal citations.",
        focus=(
            "Do all dimensions of the citation cohere with each other?",
            "Are there hallmarks of invented citations (round numbers, generic names)?",
            "Taken as a whole, does this look like a real authority?",
        ),
    ),
)

CITATION_BLOCK = """## Citation
{citation_text}

Type: {citation_type}
Components:
{components}

## Document Context
{context}
"""

SCORE_INSTRUCTIONS = """## Your Task
Rate how likely this citation is to be real and correctly cited, on a scale of
0 to 10 (10 = certainly real and correct, 0 = certainly fabricated or wrong).
You are assessing plausibility from your knowledge; do not assume you can look
the case up.

Respond in exactly this format:
SCORE: <number 0-10>
REASONING: <two to four sentences>
"""

VERDICT_INSTRUCTIONS = """## Your Task
Respond with EXACTLY one of:
- VALID
- INVALID <reason_code>
- UNCERTAIN <reason_code>

Reason codes for INVALID: reporter_court_mismatch, volume_impossible,
page_unreasonable, year_implausible, temporal_impossibility,
party_role_impossible, unknown_authority, jurisdiction_mismatch,
impossible_combination.
Reason codes for UNCERTAIN: unusual_volume_page, reporter_edge_case,
timing_questionable.

Then add a line:
REASONING: <one to three sentences>
"""


def _format_components(citation: Citation) -> str:
    if not citation.components:
        return "- See citation text"
    return "\n".join(f"- {key}: {value or 'N/A'}" for key, value in citation.components.items())


def _citation_block(citation: Citation, context: str) -> str:
    return CITATION_BLOCK.format(
        citation_text=citation.citation_text,
        citation_type=citation.citation_type.value,
        components=_format_components(citation),
        context=context or "No surrounding context available.",
    )


def build_tier2_prompt(
    profile: AgentProfile,
    citation: Citation,
    context: str,
    verdict_form: bool = False,
) -> str:
    """
    Build the prompt for one Tier-2 agent.

    Args:
        profile: Agent role
        citation: Citation under review
        context: Surrounding document text
        verdict_form: Ask for legacy VALID/INVALID/UNCERTAIN output

    Returns:
        Prompt text
    """
    focus = "\n".join(f"- {item}" for item in profile.focus)
    instructions = VERDICT_INSTRUCTIONS if verdict_form else SCORE_INSTRUCTIONS
    return (
        f"{profile.persona}\n\n"
        f"{_citation_block(citation, context)}\n"
        f"## Focus Areas\n{focus}\n\n"
        f"{instructions}"
    )


# ============================================================================
# Tier-3 Panel
# ============================================================================

TIER3_PROFILES: tuple[AgentProfile, ...] = (
    AgentProfile(
        agent_id="senior_litigator_reviewer_v1",
        title="Senior Litigator Reviewer",
        persona=(
            "You are a senior litigator with more than twenty years of federal "
            "practice reviewing an associate's brief before filing."
        ),
        focus=(
            "Would you stake your credibility with the court on this citation?",
            "Does the citation support the proposition it is cited for?",
            "Is anything about it unfamiliar in a way that worries you?",
        ),
    ),
    AgentProfile(
        agent_id="legal_researcher_v1",
        title="Legal Researcher",
        persona=(
            "You are a highly skilled legal researcher whose job is to make sure "
            "every citation in a filing is real and accurately cited."
        ),
        focus=(
            "Does the case-law evidence confirm the citation?",
            "Do the reporter, volume, page, court and year line up with the evidence?",
            "What would you still need to check by hand?",
        ),
    ),
    AgentProfile(
        agent_id="appellate_clerk_v1",
        title="Appellate Clerk",
        persona="You are serving as an appellate court law clerk reviewing a party's brief.",
        focus=(
            "Does this look and feel like an authority you would meet in a clerkship?",
            "Would the judge be misled if this citation were wrong?",
            "Is the Tier-2 panel's concern justified?",
        ),
    ),
)

TIER3_INSTRUCTIONS = """## Your Task
Classify the risk that this citation is fabricated or miscited.

Respond in exactly this format:
RISK_LEVEL: <LOW_RISK | MODERATE_RISK | NEEDS_ADDITIONAL_REVIEW>
REASONING: <three to five sentences>
"""


def summarize_tier2(tier2: Tier2Result | None) -> str:
    """Short human-readable summary of a Tier-2 consensus for Tier-3 agents."""
    if tier2 is None:
        return "No Tier-2 evaluation available."

    consensus = tier2.consensus
    lines = [
        f"Recommendation: {consensus.recommendation.value}",
        f"Agreement: {consensus.agreement_level.value}",
    ]

    match consensus:
        case ScoreConsensus():
            scores = ", ".join(f"{s:g}" for s in consensus.scores)
            lines.append(
                f"Scores: [{scores}] (average {consensus.average_score:.2f}, "
                f"std dev {consensus.standard_deviation:.2f})"
            )
        case VerdictConsensus():
            counts = ", ".join(f"{k.value}={v}" for k, v in consensus.verdict_counts.items())
            lines.append(f"Verdicts: {counts}")
        case RiskConsensus():
            lines.append(f"Final risk: {consensus.final_risk_level.value}")
        case InsufficientQuorumConsensus():
            lines.append(
                f"Only {consensus.successful_agents} agents answered "
                f"({consensus.required_quorum} required)"
            )

    for verdict in tier2.panel_evaluation:
        if verdict.succeeded and verdict.reasoning:
            lines.append(f"- {verdict.agent}: {verdict.reasoning[:300]}")

    return "\n".join(lines)


def format_case_links(case_links: list[CaseLink]) -> str:
    if not case_links:
        return "No external case-law evidence was available."

    lines = []
    for link in case_links:
        if link.found:
            details = ", ".join(
                part for part in (link.case_name, link.court, link.date_filed, link.url) if part
            )
            lines.append(f"- {link.citation}: FOUND ({details})")
        else:
            lines.append(f"- {link.citation}: NOT FOUND ({link.note or 'no match'})")
    return "\n".join(lines)


def build_tier3_prompt(
    profile: AgentProfile,
    citation: Citation,
    context: str,
    tier2: Tier2Result | None,
    case_links: list[CaseLink],
) -> str:
    """Build the prompt for one Tier-3 investigation agent."""
    focus = "\n".join(f"- {item}" for item in profile.focus)
    return (
        f"{profile.persona}\n\n"
        f"{_citation_block(citation, context)}\n"
        f"## Tier-2 Panel Summary\n{summarize_tier2(tier2)}\n\n"
        f"## Case-Law Evidence\n{format_case_links(case_links)}\n\n"
        f"## Focus Areas\n{focus}\n\n"
        f"{TIER3_INSTRUCTIONS}"
    )
