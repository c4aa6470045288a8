"""
Post-Deploy Monitor
===================
Runs after a canary has been promoted to 100% of traffic. Polls the error
rate on a fixed interval for a bounded duration and dispatches the rollback
workflow the first time a breach is observed.

Behavior:
- A breach is a successfully sampled window with traffic and an error rate
  above the threshold. Only a breach ends the run as a failure.
- A failed query is recorded and the loop carries on (fail-open). It never
  counts as breach evidence and never hides a breach seen on a later poll.
- Rollback is dispatched at most once; dispatch failures are reported, not
  retried.
- An unexpected error in the monitor itself ends the run as a pass.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from deploy_guard.config import MonitorConfig
from deploy_guard.constants import OUTPUT_SUPERVISION_OUTCOME
from deploy_guard.integrations.base import MetricsSource, RollbackDispatcher
from deploy_guard.metrics import MONITOR_POLLS, ROLLBACKS, increment_counter
from deploy_guard.models import PollRecord, SupervisionOutcome, SupervisionStatus
from deploy_guard.secret_masking import mask_string
from deploy_guard.summary import OutputWriter, SummaryWriter, format_percent

logger = logging.getLogger("deploy_guard.monitor")

REPORT_TITLE = "Post-Deploy Monitor"


def is_breach(record: PollRecord, error_threshold: float) -> bool:
    sample = record.sample
    if sample is None:
        return False
    return sample.request_count > 0 and sample.error_rate > error_threshold


class RollbackSupervisor:
    """
    Bounded polling loop with an automatic rollback trigger.
    
    Attributes:
        metrics: where error counts come from
        dispatcher: triggers the rollback workflow
        config: deployable/service identity, threshold and timing
        sleep: awaitable used between polls (the only suspension point)
        clock: monotonic seconds used to enforce the duration budget
        stop_event: optional event checked at every sleep boundary; when set
            the run ends early as a pass with the polls taken so far
    """
    
    def __init__(
        self,
        metrics: MetricsSource,
        dispatcher: RollbackDispatcher,
        summary: SummaryWriter,
        config: MonitorConfig,
        outputs: Optional[OutputWriter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
        stop_event: Optional[asyncio.Event] = None
    ):
        # Missing identity is an operator mistake: fail before any polling
        config.validate()
        
        self.metrics = metrics
        self.dispatcher = dispatcher
        self.summary = summary
        self.config = config
        self.outputs = outputs
        self.sleep = sleep
        self.clock = clock
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.stop_event = stop_event
    
    async def run(self) -> SupervisionOutcome:
        records: List[PollRecord] = []
        
        try:
            breach = await self._poll(records)
            if breach is None:
                outcome = self._complete(records)
                self._set_output(outcome)
                return outcome
        except Exception as e:
            outcome = self._fail_open(records, e)
            self._set_output(outcome)
            return outcome
        
        outcome = await self._roll_back(records, breach)
        self._set_output(outcome)
        return outcome
    
    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    
    async def _poll(self, records: List[PollRecord]) -> Optional[PollRecord]:
        """Append one record per poll; return the first breaching record"""
        cfg = self.config
        interval = cfg.poll_interval_seconds
        
        logger.info(
            f"[MONITOR] Monitoring {cfg.script_name} for {cfg.monitor_duration_seconds}s "
            f"(polling every {interval}s, threshold: {format_percent(cfg.error_threshold, 1)})"
        )
        
        start = self.clock()
        sequence = 0
        
        while self.clock() - start < cfg.monitor_duration_seconds:
            if await self._wait(interval):
                logger.info(f"[MONITOR] Stop requested after {sequence} checks")
                break
            
            sequence += 1
            window_end = self.now()
            window_start = window_end - timedelta(seconds=interval)
            
            try:
                sample = await self.metrics.query(cfg.script_name, window_start, window_end)
            except Exception as e:
                reason = mask_string(str(e)) or type(e).__name__
                logger.warning(f"[MONITOR]   [{sequence}] Analytics query failed: {reason} (continuing)")
                records.append(PollRecord(sequence=sequence, error=reason))
                increment_counter(MONITOR_POLLS, {"outcome": "query_failed"})
                continue
            
            record = PollRecord(sequence=sequence, sample=sample)
            records.append(record)
            increment_counter(MONITOR_POLLS, {"outcome": "sampled"})
            logger.info(
                f"[MONITOR]   [{sequence}] requests={sample.request_count} "
                f"errors={sample.error_count} rate={format_percent(sample.error_rate)}"
            )
            
            if is_breach(record, cfg.error_threshold):
                return record
        
        return None
    
    async def _wait(self, seconds: float) -> bool:
        """Sleep one interval. Returns True if a stop was requested."""
        if self.stop_event is not None and self.stop_event.is_set():
            return True
        await self.sleep(seconds)
        return self.stop_event is not None and self.stop_event.is_set()
    
    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------
    
    async def _roll_back(self, records: List[PollRecord], breach: PollRecord) -> SupervisionOutcome:
        cfg = self.config
        rate = format_percent(breach.sample.error_rate)
        threshold = format_percent(cfg.error_threshold, 1)
        
        logger.error(f"[MONITOR] Error rate {rate} exceeds threshold {threshold} - triggering rollback")
        
        # The report must not stand between a confirmed breach and the dispatch
        try:
            self.summary.heading(REPORT_TITLE)
            self.summary.write(f"**ROLLBACK TRIGGERED** for `{cfg.service_name}` (`{cfg.environment}`)")
            self.summary.write()
            self.summary.write(f"Error rate {rate} exceeded threshold {threshold} at check {breach.sequence}.")
            self.summary.write()
            self._write_history(records)
        except Exception as e:
            logger.error(f"[MONITOR] Failed to write rollback report: {e}")
        
        dispatched = False
        try:
            dispatched = bool(await self.dispatcher.trigger(cfg.service_name, cfg.environment))
        except Exception as e:
            logger.error(f"[MONITOR] Rollback dispatch raised: {mask_string(str(e))}")
        
        if not dispatched:
            logger.error(f"[MONITOR] Rollback dispatch failed for {cfg.service_name} - manual rollback required")
        
        try:
            self.summary.write()
            if dispatched:
                self.summary.write("Rollback workflow dispatched.")
            else:
                self.summary.write("**Rollback dispatch failed** - manual rollback required.")
        except Exception as e:
            logger.error(f"[MONITOR] Failed to write rollback report: {e}")
        
        increment_counter(ROLLBACKS, {"service": cfg.service_name, "dispatched": str(dispatched).lower()})
        
        return SupervisionOutcome(
            status=SupervisionStatus.ROLLED_BACK,
            records=tuple(records),
            triggering_index=breach.sequence,
            rollback_dispatched=dispatched,
        )
    
    def _complete(self, records: List[PollRecord]) -> SupervisionOutcome:
        cfg = self.config
        logger.info(f"[MONITOR] {cfg.script_name} passed after {len(records)} checks")
        
        self.summary.heading(REPORT_TITLE)
        self.summary.write(
            f"**PASS** - `{cfg.script_name}` monitored for {cfg.monitor_duration_seconds}s with no error spike."
        )
        self.summary.write()
        self._write_history(records)
        
        return SupervisionOutcome(status=SupervisionStatus.PASSED, records=tuple(records))
    
    def _fail_open(self, records: List[PollRecord], error: Exception) -> SupervisionOutcome:
        reason = mask_string(str(error)) or type(error).__name__
        logger.error(f"[MONITOR] Monitor error: {reason}", exc_info=True)
        
        try:
            self.summary.heading(REPORT_TITLE)
            self.summary.write(f"> **PASS** (fail-open) - script error: {reason}")
        except Exception as e:
            logger.error(f"[MONITOR] Failed to write fail-open report: {e}")
        
        return SupervisionOutcome(
            status=SupervisionStatus.PASSED,
            records=tuple(records),
            internal_error=reason,
        )
    
    def _write_history(self, records: List[PollRecord]):
        rows = []
        for record in records:
            if record.sample is not None:
                sample = record.sample
                rows.append((record.sequence, sample.request_count, sample.error_count,
                             format_percent(sample.error_rate)))
            else:
                rows.append((record.sequence, "-", "-", f"_{record.error}_"))
        self.summary.table(("Check", "Requests", "Errors", "Rate"), rows)
    
    def _set_output(self, outcome: SupervisionOutcome):
        if self.outputs is None:
            return
        try:
            self.outputs.set(OUTPUT_SUPERVISION_OUTCOME, outcome.status.value)
        except Exception as e:
            logger.error(f"[MONITOR] Failed to set step output: {e}")
