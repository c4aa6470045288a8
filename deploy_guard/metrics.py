"""
Prometheus-Compatible Metrics Collection

Counters, gauges and histograms for the scorer, gate and monitor.
Non-blocking - a metrics failure never affects a deploy decision.

The CLI runs as a short-lived CI step, so nothing scrapes it. When
PUSHGATEWAY_URL is set the registry is pushed once at the end of a run.

Usage:
    from deploy_guard.metrics import CANARY_CHECKS, increment_counter
    
    increment_counter(CANARY_CHECKS, {"result": "pass"})
"""

import time
import os
import logging
from typing import Dict, Optional
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, push_to_gateway

logger = logging.getLogger(__name__)


# ============================================================================
# METRIC DEFINITIONS
# ============================================================================

REGISTRY = CollectorRegistry()

CONFIDENCE_SCORE = Gauge(
    'deploy_guard_confidence_score',
    'Last computed deployment confidence score (0-100)',
    ['deployable'],
    registry=REGISTRY
)

CANARY_CHECKS = Counter(
    'deploy_guard_canary_checks_total',
    'Canary error rate checks',
    ['result'],  # pass, fail, fail_open
    registry=REGISTRY
)

MONITOR_POLLS = Counter(
    'deploy_guard_monitor_polls_total',
    'Post-deploy monitor polls',
    ['outcome'],  # sampled, query_failed
    registry=REGISTRY
)

ROLLBACKS = Counter(
    'deploy_guard_rollbacks_total',
    'Rollbacks triggered by the post-deploy monitor',
    ['service', 'dispatched'],
    registry=REGISTRY
)

METRICS_QUERY_LATENCY = Histogram(
    'deploy_guard_metrics_query_duration_seconds',
    'Latency of error-rate queries against the metrics backend',
    ['source'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def increment_counter(counter, labels: Dict[str, str], amount: int = 1):
    """Safely increment a counter with labels"""
    try:
        counter.labels(**labels).inc(amount)
    except Exception as e:
        logger.debug(f"[METRICS] Failed to increment counter: {e}")


def observe_latency(histogram, labels: Dict[str, str], duration: float):
    """Safely record latency observation"""
    try:
        histogram.labels(**labels).observe(duration)
    except Exception as e:
        logger.debug(f"[METRICS] Failed to observe latency: {e}")


def set_gauge(gauge, labels: Dict[str, str], value: float):
    """Safely set a gauge value"""
    try:
        gauge.labels(**labels).set(value)
    except Exception as e:
        logger.debug(f"[METRICS] Failed to set gauge: {e}")


@contextmanager
def timed_operation(histogram, labels: Dict[str, str]):
    """Context manager for timing operations"""
    start = time.time()
    try:
        yield
    finally:
        duration = time.time() - start
        observe_latency(histogram, labels, duration)


def push_metrics(job: str, gateway: Optional[str] = None) -> bool:
    """Push the registry to a Pushgateway if one is configured"""
    gateway = gateway or os.getenv("PUSHGATEWAY_URL")
    if not gateway:
        return False
    
    try:
        push_to_gateway(gateway, job=job, registry=REGISTRY)
        logger.info(f"[METRICS] Pushed metrics for job {job} to {gateway}")
        return True
    except Exception as e:
        logger.warning(f"[METRICS] Failed to push metrics to {gateway}: {e}")
        return False
