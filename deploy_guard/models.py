"""
Data Model
Change descriptors, risk factors, metrics samples and supervision outcomes.
All records are immutable once built.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class DegradedReason(Enum):
    """Why a confidence score fell back to the neutral value"""
    NO_COMMIT = "no_commit"                # Manual dispatch without a known commit
    UPSTREAM_FAILURE = "upstream_failure"  # Version-control lookup or scoring failed


class PollStatus(Enum):
    """Outcome of a single monitor poll"""
    SAMPLED = "sampled"
    QUERY_FAILED = "query_failed"


class SupervisionStatus(Enum):
    """Terminal state of a post-deploy monitor run"""
    PASSED = "pass"
    ROLLED_BACK = "rollback"


@dataclass(frozen=True)
class ChangeDescriptor:
    """A single commit of a deployable, as seen by the scorer"""
    deployable_name: str
    commit_ref: str
    diff_total_lines: int = 0
    changed_file_paths: Tuple[str, ...] = ()
    affected_service_count: int = 0
    
    def __post_init__(self):
        if self.diff_total_lines < 0:
            raise ValueError("diff_total_lines must be >= 0")
        if self.affected_service_count < 0:
            raise ValueError("affected_service_count must be >= 0")
        # Accept any sequence but store a tuple
        object.__setattr__(self, "changed_file_paths", tuple(self.changed_file_paths))


@dataclass(frozen=True)
class RiskFactor:
    """Individual signal contributing to the confidence score"""
    label: str
    score_delta: Optional[int]  # None means "not applicable"
    
    @property
    def impact(self) -> str:
        if self.score_delta is None:
            return "n/a"
        return f"{self.score_delta:+d}"


@dataclass(frozen=True)
class ConfidenceResult:
    """Advisory 0-100 confidence score for a change"""
    score: int
    factors: Tuple[RiskFactor, ...] = ()
    degraded: bool = False
    degraded_reason: Optional[DegradedReason] = None
    detail: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class MetricsSample:
    """Request and error counts for one observation window"""
    request_count: int
    error_count: int
    
    def __post_init__(self):
        if self.request_count < 0 or self.error_count < 0:
            raise ValueError("counts must be >= 0")
        if self.error_count > self.request_count:
            raise ValueError(
                f"error_count ({self.error_count}) exceeds request_count ({self.request_count})"
            )
    
    @property
    def error_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.error_count / self.request_count


@dataclass(frozen=True)
class CanaryResult:
    """Verdict of a canary error-rate check"""
    passed: bool
    sample: Optional[MetricsSample] = None
    error: Optional[str] = None  # Set when the check passed fail-open


@dataclass(frozen=True)
class PollRecord:
    """One entry in the post-deploy monitor's audit trail"""
    sequence: int
    sample: Optional[MetricsSample] = None
    error: Optional[str] = None
    
    def __post_init__(self):
        if self.sequence < 1:
            raise ValueError("sequence must be >= 1")
        if (self.sample is None) == (self.error is None):
            raise ValueError("exactly one of sample or error must be set")
    
    @property
    def status(self) -> PollStatus:
        return PollStatus.SAMPLED if self.sample is not None else PollStatus.QUERY_FAILED


@dataclass(frozen=True)
class SupervisionOutcome:
    """Terminal result of a post-deploy monitor run"""
    status: SupervisionStatus
    records: Tuple[PollRecord, ...] = ()
    triggering_index: Optional[int] = None  # Sequence number of the breaching poll
    rollback_dispatched: Optional[bool] = None
    internal_error: Optional[str] = None
    
    @property
    def rolled_back(self) -> bool:
        return self.status == SupervisionStatus.ROLLED_BACK
    
    @property
    def exit_code(self) -> int:
        return 1 if self.rolled_back else 0
