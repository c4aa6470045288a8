"""
Deployment Confidence Score
============================
Pre-approval risk scoring for a change that has passed staging.

Starts from a baseline of 100 and applies independent adjustments for diff
size, files outside the source tree, dependency changes, the number of
services in the run and time since the last production deploy. The result
is advisory: it is shown to the human approver and never blocks anything.
"""

import logging
import math
from typing import List, Mapping, Optional, Sequence

from deploy_guard.constants import (
    BASELINE_SCORE,
    DEFAULT_SERVICE_DEPLOYABLES,
    DEPENDENCY_CHANGE_PENALTY,
    DEPENDENCY_FILE_NAMES,
    LARGE_CHANGE_LINES,
    LARGE_CHANGE_PENALTY,
    MANY_SERVICES_PENALTY,
    MANY_SERVICES_THRESHOLD,
    MAX_LISTED_PATHS,
    MAX_SCORE,
    MIN_SCORE,
    NEUTRAL_SCORE,
    OUTPUT_CONFIDENCE_SCORE,
    OUTSIDE_SOURCE_PENALTY,
    SMALL_CHANGE_BONUS,
    SMALL_CHANGE_LINES,
    SOME_SERVICES_PENALTY,
    SOURCE_PREFIX,
    STALE_DEPLOY_DAYS,
    STALE_DEPLOY_PENALTY,
    TEST_FILE_SUFFIXES,
)
from deploy_guard.integrations.base import ChangeSource, DeploymentHistory
from deploy_guard.metrics import CONFIDENCE_SCORE, set_gauge
from deploy_guard.models import ChangeDescriptor, ConfidenceResult, DegradedReason, RiskFactor
from deploy_guard.secret_masking import mask_string
from deploy_guard.summary import OutputWriter, SummaryWriter

logger = logging.getLogger("deploy_guard.confidence")

REPORT_TITLE = "Deployment Confidence Score"
NO_COMMIT_DETAIL = "No source commit available for analysis (manual dispatch without ref)."


def is_test_file(path: str) -> bool:
    return path.endswith(TEST_FILE_SUFFIXES)


def is_dependency_file(path: str) -> bool:
    return path.rsplit("/", 1)[-1] in DEPENDENCY_FILE_NAMES


def count_services_affected(
    deploy_flags: Mapping[str, bool],
    service_deployables: Sequence[str] = DEFAULT_SERVICE_DEPLOYABLES
) -> int:
    """Count deployables flagged for this run that are services, not packages"""
    return sum(1 for name in service_deployables if deploy_flags.get(name) is True)


def _round_days(days: float) -> int:
    return int(math.floor(days + 0.5))


class RiskScorer:
    """
    Converts a change's static and historical properties into a 0-100
    confidence score with a breakdown of contributing signals.
    
    Holds no state between calls; the same inputs give the same result.
    """
    
    def __init__(
        self,
        summary: SummaryWriter,
        history: Optional[DeploymentHistory] = None,
        changes: Optional[ChangeSource] = None,
        service_deployables: Sequence[str] = DEFAULT_SERVICE_DEPLOYABLES,
        source_prefix: str = SOURCE_PREFIX,
        outputs: Optional[OutputWriter] = None
    ):
        self.summary = summary
        self.history = history
        self.changes = changes
        self.service_deployables = tuple(service_deployables)
        self.source_prefix = source_prefix
        self.outputs = outputs
    
    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    
    async def score(
        self,
        change: ChangeDescriptor,
        deploy_flags: Optional[Mapping[str, bool]] = None,
        repository: Optional[str] = None
    ) -> ConfidenceResult:
        """
        Score an already-resolved change.
        
        Args:
            change: Diff statistics for the commit
            deploy_flags: Which deployables ship in this run. When given, the
                service count is derived from it; otherwise the change's own
                ``affected_service_count`` is used.
            repository: Repository used for the deployment history lookup
                (defaults to the change's deployable name)
        """
        repository = repository or change.deployable_name
        if not change.commit_ref or not repository:
            logger.warning("[SCORE] Change has no commit or repository identity, reporting neutral score")
            result = self._neutral(DegradedReason.NO_COMMIT, NO_COMMIT_DETAIL, repository or None)
            self._report(result, repository, change.commit_ref)
            return result
        
        try:
            result = await self._evaluate(change, deploy_flags, repository)
        except Exception as e:
            logger.error(f"[SCORE] Scoring failed for {repository}: {e}", exc_info=True)
            result = self._neutral(DegradedReason.UPSTREAM_FAILURE, f"Analysis unavailable: {e}", repository)
        
        self._report(result, repository, change.commit_ref)
        return result
    
    async def score_commit(
        self,
        repository: Optional[str],
        commit_ref: Optional[str],
        deploy_flags: Optional[Mapping[str, bool]] = None
    ) -> ConfidenceResult:
        """
        Resolve a commit through the change source, then score it.
        
        Never raises. Missing commit identity or an upstream failure yields
        the neutral score with ``degraded=True``.
        """
        deploy_flags = deploy_flags or {}
        
        if not repository or not commit_ref:
            logger.warning("[SCORE] No source commit available, reporting neutral score")
            result = self._neutral(DegradedReason.NO_COMMIT, NO_COMMIT_DETAIL, repository)
            self._report(result, repository, commit_ref)
            return result
        
        try:
            if self.changes is None:
                raise RuntimeError("no change source configured")
            service_count = count_services_affected(deploy_flags, self.service_deployables)
            change = await self.changes.get_change(repository, commit_ref, service_count)
            result = await self._evaluate(change, deploy_flags, repository)
        except Exception as e:
            logger.error(f"[SCORE] Analysis unavailable for {repository}@{commit_ref[:7]}: {e}")
            result = self._neutral(DegradedReason.UPSTREAM_FAILURE, f"Analysis unavailable: {e}", repository)
        
        self._report(result, repository, commit_ref)
        return result
    
    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    
    async def _evaluate(
        self,
        change: ChangeDescriptor,
        deploy_flags: Optional[Mapping[str, bool]],
        repository: str
    ) -> ConfidenceResult:
        factors: List[RiskFactor] = []
        
        # 1. Diff size
        if change.diff_total_lines < SMALL_CHANGE_LINES:
            factors.append(RiskFactor(f"Small change (<{SMALL_CHANGE_LINES} lines)", SMALL_CHANGE_BONUS))
        if change.diff_total_lines > LARGE_CHANGE_LINES:
            factors.append(RiskFactor(f"Large change (>{LARGE_CHANGE_LINES} lines)", -LARGE_CHANGE_PENALTY))
        
        # 2. Files outside the source tree
        outside = [
            path for path in change.changed_file_paths
            if not path.startswith(self.source_prefix) and not is_test_file(path)
        ]
        if outside:
            listed = ", ".join(outside[:MAX_LISTED_PATHS])
            more = "..." if len(outside) > MAX_LISTED_PATHS else ""
            factors.append(RiskFactor(
                f"Files outside {self.source_prefix} ({listed}{more})",
                -OUTSIDE_SOURCE_PENALTY
            ))
        
        # 3. Dependency manifests and lockfiles
        dependency_files = [path for path in change.changed_file_paths if is_dependency_file(path)]
        if dependency_files:
            factors.append(RiskFactor(
                f"Dependency changes ({', '.join(dependency_files)})",
                -DEPENDENCY_CHANGE_PENALTY
            ))
        
        # 4. Services in this run
        if deploy_flags is not None:
            service_count = count_services_affected(deploy_flags, self.service_deployables)
        else:
            service_count = change.affected_service_count
        
        if service_count > MANY_SERVICES_THRESHOLD:
            factors.append(RiskFactor(
                f"{service_count} services affected (>{MANY_SERVICES_THRESHOLD})",
                -MANY_SERVICES_PENALTY
            ))
        elif service_count >= 2:
            factors.append(RiskFactor(
                f"{service_count} services affected (2-{MANY_SERVICES_THRESHOLD})",
                -SOME_SERVICES_PENALTY
            ))
        
        # 5. Time since last production deploy
        stale_factor = await self._assess_deploy_recency(repository)
        if stale_factor is not None:
            factors.append(stale_factor)
        
        raw = BASELINE_SCORE + sum(f.score_delta for f in factors if f.score_delta is not None)
        score = max(MIN_SCORE, min(MAX_SCORE, raw))
        
        logger.info(f"[SCORE] {repository}: {score}/100 from {len(factors)} signals")
        
        return ConfidenceResult(score=score, factors=tuple(factors), source=repository)
    
    async def _assess_deploy_recency(self, repository: str) -> Optional[RiskFactor]:
        if self.history is None:
            return None
        
        try:
            days = await self.history.days_since_last_production_deploy(repository)
        except Exception as e:
            # Missing history never lowers confidence
            logger.warning(f"[SCORE] Last prod deploy lookup failed for {repository}: {e}")
            return RiskFactor("Last prod deploy time unavailable", None)
        
        if days > STALE_DEPLOY_DAYS:
            elapsed = "never" if math.isinf(days) else f"{_round_days(days)}d"
            return RiskFactor(
                f">{STALE_DEPLOY_DAYS} days since last prod deploy ({elapsed})",
                -STALE_DEPLOY_PENALTY
            )
        return None
    
    def _neutral(
        self,
        reason: DegradedReason,
        detail: str,
        repository: Optional[str]
    ) -> ConfidenceResult:
        return ConfidenceResult(
            score=NEUTRAL_SCORE,
            degraded=True,
            degraded_reason=reason,
            detail=mask_string(detail),
            source=repository,
        )
    
    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    
    def _report(self, result: ConfidenceResult, repository: Optional[str], commit_ref: Optional[str]):
        self.summary.heading(REPORT_TITLE)
        self.summary.write(f"**Score: {result.score}** / 100")
        self.summary.write()
        
        if result.degraded:
            self.summary.write(f"_{result.detail}_")
        else:
            self.summary.write(f"> Source: `{repository}` @ `{(commit_ref or '')[:7]}`")
            self.summary.write()
            if result.factors:
                self.summary.table(
                    ("Signal", "Impact"),
                    ((f.label, f.impact) for f in result.factors)
                )
            else:
                self.summary.write("_No risk signals detected._")
        
        if repository:
            set_gauge(CONFIDENCE_SCORE, {"deployable": repository}, result.score)
        if self.outputs is not None:
            self.outputs.set(OUTPUT_CONFIDENCE_SCORE, result.score)
