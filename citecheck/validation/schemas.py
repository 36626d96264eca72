"""
Pydantic Schemas for the Validation Layer.

Panel verdicts, consensus records, Tier-2/Tier-3 results and validation job
progress. Verdicts and consensus records are tagged unions keyed on ``kind``
so score-based, legacy verdict-based and Tier-3 risk-based outputs are
handled explicitly rather than by probing for optional fields.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class RiskLevel(str, Enum):
    """Risk classification shown for a citation."""

    LOW_RISK = "LOW_RISK"
    MODERATE_RISK = "MODERATE_RISK"
    NEEDS_ADDITIONAL_REVIEW = "NEEDS_ADDITIONAL_REVIEW"

    @property
    def severity(self) -> int:
        """Ordering used for conservative tie-breaks (higher = worse)."""
        return _RISK_SEVERITY[self]


_RISK_SEVERITY = {
    RiskLevel.LOW_RISK: 0,
    RiskLevel.MODERATE_RISK: 1,
    RiskLevel.NEEDS_ADDITIONAL_REVIEW: 2,
}


class FinalStatus(str, Enum):
    """Tier-3 final status."""

    VALID = "VALID"
    WARN = "WARN"
    FAIL = "FAIL"


RISK_TO_STATUS = {
    RiskLevel.LOW_RISK: FinalStatus.VALID,
    RiskLevel.MODERATE_RISK: FinalStatus.WARN,
    RiskLevel.NEEDS_ADDITIONAL_REVIEW: FinalStatus.FAIL,
}


class Verdict(str, Enum):
    """Legacy discrete panel verdict."""

    VALID = "VALID"
    INVALID = "INVALID"
    UNCERTAIN = "UNCERTAIN"


class AgreementLevel(str, Enum):
    """Categorical summary of panel dispersion."""

    # Score panels (standard deviation buckets)
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"

    # Vote panels (verdict or risk level counts)
    UNANIMOUS = "unanimous"
    STRONG = "strong"
    MAJORITY = "majority"
    SPLIT = "split"

    # Quorum not met
    NONE = "none"


class TriggerReason(str, Enum):
    """Why a Tier-2 consensus escalates to Tier 3."""

    MODERATE_BAND = "moderate_band"      # mean in [5, 8)
    HIGH_DISPERSION = "high_dispersion"  # std dev above threshold
    NOT_UNANIMOUS = "not_unanimous"      # legacy vote split


class ValidationStage(str, Enum):
    """Per-citation escalation state."""

    UNVALIDATED = "unvalidated"
    TIER2_DONE = "tier2_done"
    TIER3_TRIGGERED = "tier3_triggered"
    TIER3_DONE = "tier3_done"
    TIER3_FAILED = "tier3_failed"
    FAILED = "failed"


# ============================================================================
# Panel Verdicts
# ============================================================================


class TokenUsage(BaseModel):
    """Token and cost accounting for one or more agent calls."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    provider: str = Field(default="unknown")
    model: str = Field(default="unknown")
    cost_usd: float = Field(default=0.0, ge=0.0)


class _VerdictBase(BaseModel):
    """Fields shared by every panel verdict."""

    model_config = ConfigDict(frozen=True)

    agent: str = Field(..., description="Agent identifier")
    model: str = Field(default="", description="Model that produced the verdict")
    reasoning: str = Field(default="", description="Free-text reasoning")
    usage: TokenUsage | None = Field(default=None)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return True


class ScoreVerdict(_VerdictBase):
    """Current form: a continuous score where 10 means clearly valid."""

    kind: Literal["score"] = "score"
    score: float = Field(..., ge=0.0, le=10.0)


class LabelVerdict(_VerdictBase):
    """Legacy form: VALID / INVALID / UNCERTAIN with an optional reason code."""

    kind: Literal["verdict"] = "verdict"
    verdict: Verdict
    reason_code: str | None = Field(default=None)


class RiskVerdict(_VerdictBase):
    """Tier-3 form: a direct risk classification."""

    kind: Literal["risk"] = "risk"
    risk_level: RiskLevel


class FailedVerdict(_VerdictBase):
    """The agent call failed (timeout, transport error, unparseable output)."""

    kind: Literal["failed"] = "failed"
    error: str = Field(..., description="Failure description")

    @property
    def succeeded(self) -> bool:
        return False


PanelVerdict = Annotated[
    ScoreVerdict | LabelVerdict | RiskVerdict | FailedVerdict,
    Field(discriminator="kind"),
]


# ============================================================================
# Consensus
# ============================================================================


class _ConsensusBase(BaseModel):
    """Fields shared by every consensus record."""

    model_config = ConfigDict(frozen=True)

    agreement_level: AgreementLevel
    recommendation: RiskLevel
    reasoning: str = Field(default="")
    tier_3_trigger: bool = Field(default=False)
    successful_agents: int = Field(..., ge=0)
    failed_agents: int = Field(default=0, ge=0)


class ScoreConsensus(_ConsensusBase):
    """Statistical consensus over score verdicts."""

    kind: Literal["score"] = "score"
    average_score: float = Field(..., ge=0.0, le=10.0)
    standard_deviation: float = Field(..., ge=0.0)
    variance: float = Field(..., ge=0.0)
    scores: list[float] = Field(default_factory=list)
    trigger_reasons: list[TriggerReason] = Field(default_factory=list)


class VerdictConsensus(_ConsensusBase):
    """Majority vote over legacy verdicts."""

    kind: Literal["verdict"] = "verdict"
    verdict_counts: dict[Verdict, int] = Field(default_factory=dict)
    majority_verdict: Verdict
    confidence_score: float = Field(..., ge=0.0, le=1.0)


class RiskConsensus(_ConsensusBase):
    """Plurality vote over Tier-3 risk levels."""

    kind: Literal["risk"] = "risk"
    risk_level_counts: dict[RiskLevel, int] = Field(default_factory=dict)
    final_risk_level: RiskLevel


class InsufficientQuorumConsensus(_ConsensusBase):
    """Too few agents succeeded; the citation defaults to needs-review."""

    kind: Literal["insufficient_quorum"] = "insufficient_quorum"
    required_quorum: int = Field(..., ge=1)


Consensus = Annotated[
    ScoreConsensus | VerdictConsensus | RiskConsensus | InsufficientQuorumConsensus,
    Field(discriminator="kind"),
]


# ============================================================================
# Tier Results
# ============================================================================


class Tier2Result(BaseModel):
    """Panel evaluation and consensus recorded on a citation after Tier 2."""

    panel_evaluation: list[PanelVerdict] = Field(default_factory=list)
    consensus: Consensus
    total_usage: TokenUsage | None = Field(default=None)
    evaluated_at: datetime = Field(default_factory=utcnow)


class CaseLink(BaseModel):
    """External case-law evidence gathered for Tier 3."""

    citation: str = Field(..., description="Citation string that was looked up")
    found: bool = Field(default=False)
    case_name: str | None = Field(default=None)
    court: str | None = Field(default=None)
    date_filed: str | None = Field(default=None)
    url: str | None = Field(default=None)
    note: str | None = Field(default=None, description="Lookup status or error")


class Tier3Result(BaseModel):
    """
    Investigation panel result.

    ``final_risk_level`` and ``final_status`` are ``None`` when the panel did
    not reach quorum; the citation then keeps its Tier-2 status.
    """

    panel_evaluation: list[PanelVerdict] = Field(default_factory=list)
    consensus: Consensus
    case_links: list[CaseLink] = Field(default_factory=list)
    final_risk_level: RiskLevel | None = Field(default=None)
    final_status: FinalStatus | None = Field(default=None)
    forced: bool = Field(default=False)
    total_usage: TokenUsage | None = Field(default=None)
    investigated_at: datetime = Field(default_factory=utcnow)

    @property
    def computed(self) -> bool:
        return self.final_risk_level is not None


# ============================================================================
# Validation Jobs
# ============================================================================


class JobStatus(str, Enum):
    """Lifecycle of a validation job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobPhase(str, Enum):
    """Which tier a running job is working on."""

    TIER2 = "tier2"
    TIER3 = "tier3"


class SlotStatus(str, Enum):
    """Per-citation work slot inside a job tier."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TierProgress(BaseModel):
    """Counters for one tier of a job. Counters always sum to ``total``."""

    total: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @property
    def current(self) -> int:
        """Slots that reached a terminal state."""
        return self.completed + self.failed

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(100 * self.current / self.total)


class ValidationJob(BaseModel):
    """Progress record for one validation run over a document snapshot."""

    job_id: str = Field(..., description="Job identifier")
    check_id: str = Field(..., description="Snapshot the run started from")
    lineage_id: str = Field(..., description="Document lineage")
    result_check_id: str | None = Field(
        default=None, description="Snapshot written by the run"
    )
    status: JobStatus = Field(default=JobStatus.QUEUED)
    phase: JobPhase | None = Field(default=None)
    tier2_progress: TierProgress = Field(default_factory=TierProgress)
    tier3_progress: TierProgress = Field(default_factory=TierProgress)
    force: bool = Field(default=False)
    supersedes: str | None = Field(default=None, description="Previous job for the check")
    error: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = Field(default=None)
    finished_at: datetime | None = Field(default=None)


class JobEventType(str, Enum):
    """Push-stream event types for a validation job."""

    START = "start"
    TIER2_PROGRESS = "tier2_progress"
    TIER2_COMPLETE = "tier2_complete"
    TIER3_PROGRESS = "tier3_progress"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobEventType.COMPLETE, JobEventType.ERROR)


class JobEvent(BaseModel):
    """One progress event carrying a copy of the job record."""

    type: JobEventType
    job: ValidationJob
