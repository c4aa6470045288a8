"""
Canary Error Rate Check
=======================
One-shot gate run during a canary rollout, before traffic is promoted to
100%. Samples the worker's error rate over a trailing window and returns a
pass/fail verdict.

Fail-open: no traffic passes, and a failure of the metrics backend passes.
Only an observed error rate above the threshold fails the gate.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from deploy_guard.config import CanaryConfig
from deploy_guard.constants import OUTPUT_CANARY_PASSED
from deploy_guard.integrations.base import MetricsSource
from deploy_guard.metrics import CANARY_CHECKS, increment_counter
from deploy_guard.models import CanaryResult, MetricsSample
from deploy_guard.secret_masking import mask_string
from deploy_guard.summary import OutputWriter, SummaryWriter, format_percent

logger = logging.getLogger("deploy_guard.canary")

REPORT_TITLE = "Canary Error Rate Check"


def sample_passes(sample: MetricsSample, error_threshold: float) -> bool:
    """Zero traffic is not evidence of failure. The threshold is inclusive."""
    return sample.request_count == 0 or sample.error_rate <= error_threshold


class CanaryGate:
    """Pass/fail decision from a single live error-rate sample"""
    
    def __init__(
        self,
        metrics: MetricsSource,
        summary: SummaryWriter,
        outputs: Optional[OutputWriter] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.metrics = metrics
        self.summary = summary
        self.outputs = outputs
        self.now = now or (lambda: datetime.now(timezone.utc))
    
    async def evaluate(
        self,
        deployable_name: str,
        observation_window_seconds: int,
        error_threshold: float
    ) -> CanaryResult:
        """
        Query the trailing window once and decide.
        
        Raises:
            ConfigurationError: missing name, non-positive window or a
                threshold outside [0, 1]. Raised before any query is made.
        """
        CanaryConfig(
            script_name=deployable_name,
            observation_seconds=observation_window_seconds,
            error_threshold=error_threshold,
        ).validate()
        
        try:
            window_end = self.now()
            window_start = window_end - timedelta(seconds=observation_window_seconds)
            
            try:
                sample = await self.metrics.query(deployable_name, window_start, window_end)
            except Exception as e:
                reason = mask_string(str(e)) or type(e).__name__
                logger.error(f"[CANARY] Error querying analytics: {reason}")
                return self._fail_open(f"analytics query failed: {reason}")
            
            passed = sample_passes(sample, error_threshold)
            self._report(deployable_name, observation_window_seconds, error_threshold, sample, passed)
            
            increment_counter(CANARY_CHECKS, {"result": "pass" if passed else "fail"})
            logger.info(
                f"[CANARY] {deployable_name}: {sample.error_count}/{sample.request_count} errors "
                f"({format_percent(sample.error_rate)}) -> {'PASS' if passed else 'FAIL'}"
            )
            
            self._set_output(passed)
            return CanaryResult(passed=passed, sample=sample)
        
        except Exception as e:
            # Never block a deploy on a bug in the gate itself
            logger.error(f"[CANARY] Canary check error: {e}", exc_info=True)
            return self._fail_open(f"script error: {mask_string(str(e))}")
    
    def _fail_open(self, reason: str) -> CanaryResult:
        self.summary.heading(REPORT_TITLE)
        self.summary.write(f"> **PASS** (fail-open) - {reason}")
        increment_counter(CANARY_CHECKS, {"result": "fail_open"})
        self._set_output(True)
        return CanaryResult(passed=True, error=reason)
    
    def _report(
        self,
        deployable_name: str,
        window_seconds: int,
        error_threshold: float,
        sample: MetricsSample,
        passed: bool
    ):
        self.summary.heading(REPORT_TITLE)
        self.summary.table(
            ("Metric", "Value"),
            [
                ("Script", f"`{deployable_name}`"),
                ("Window", f"{window_seconds}s"),
                ("Requests", sample.request_count),
                ("Errors", sample.error_count),
                ("Error Rate", format_percent(sample.error_rate)),
                ("Threshold", format_percent(error_threshold)),
                ("Result", f"**{'PASS' if passed else 'FAIL'}**"),
            ]
        )
        
        if sample.request_count == 0:
            self.summary.write()
            self.summary.write("_No traffic observed during window - passing (fail-open)._")
    
    def _set_output(self, passed: bool):
        if self.outputs is not None:
            self.outputs.set(OUTPUT_CANARY_PASSED, passed)
