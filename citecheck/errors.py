"""
Error Taxonomy for the Citation Checker.

Input errors are rejected and never retried. Agent and quorum errors are
contained at the citation level and recorded as data (a failed verdict or a
degraded consensus). Infrastructure errors propagate and fail the whole
validation job.
"""


class CitationCheckError(Exception):
    """Base class for all citation checker errors."""

    pass


class ValidationInputError(CitationCheckError):
    """Raised when paragraph or citation data is malformed."""

    pass


class AgentError(CitationCheckError):
    """Raised when a single panel agent fails to produce a usable verdict."""

    def __init__(self, agent: str, message: str) -> None:
        super().__init__(f"{agent}: {message}")
        self.agent = agent
        self.message = message


class QuorumError(CitationCheckError):
    """Raised when too few agents succeeded to compute a consensus."""

    def __init__(self, successful: int, required: int) -> None:
        super().__init__(
            f"Only {successful} successful agent responses, {required} required"
        )
        self.successful = successful
        self.required = required


class InfrastructureError(CitationCheckError):
    """Raised when the snapshot store or job bookkeeping is unavailable."""

    pass


class NotFoundError(CitationCheckError):
    """Raised when a check, citation, paragraph or job does not exist."""

    pass


class AlreadyValidatedError(CitationCheckError):
    """Raised when validation is requested for an already validated check."""

    pass
