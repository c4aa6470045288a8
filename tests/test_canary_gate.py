"""
Canary Gate Tests
Tests for the one-shot canary error rate check
"""

import pytest
import asyncio
import sys
import os
from datetime import datetime, timedelta, timezone
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deploy_guard.config import ConfigurationError
from deploy_guard.deployment.canary_gate import CanaryGate, sample_passes
from deploy_guard.integrations.base import MetricsQueryError, MetricsSource
from deploy_guard.models import MetricsSample
from deploy_guard.summary import OutputWriter, SummaryWriter


FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class FakeMetrics(MetricsSource):
    """Metrics source returning a fixed sample, or raising"""
    
    def __init__(self, requests=0, errors=0, error=None):
        self.requests = requests
        self.errors = errors
        self.error = error
        self.calls = []
    
    async def query(self, deployable_name, window_start, window_end):
        self.calls.append((deployable_name, window_start, window_end))
        if self.error:
            raise self.error
        return MetricsSample(request_count=self.requests, error_count=self.errors)


class BrokenTableSummary(SummaryWriter):
    """Summary writer that fails while rendering tables"""
    
    def table(self, headers, rows):
        raise RuntimeError("summary exploded")


def make_gate(metrics, summary=None, outputs=None):
    return CanaryGate(
        metrics=metrics,
        summary=summary or SummaryWriter(),
        outputs=outputs or OutputWriter(),
        now=lambda: FIXED_NOW,
    )


class TestCanaryGate:
    """Test suite for canary verdicts"""
    
    def test_zero_traffic_always_passes(self):
        for threshold in (0.0, 0.05, 1.0):
            gate = make_gate(FakeMetrics(requests=0, errors=0))
            result = asyncio.run(gate.evaluate("smoltbot-gateway", 60, threshold))
            assert result.passed
            assert result.sample.request_count == 0
    
    def test_rate_above_threshold_fails(self):
        outputs = OutputWriter()
        gate = make_gate(FakeMetrics(requests=100, errors=6), outputs=outputs)
        
        result = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert not result.passed
        assert result.sample.error_rate == pytest.approx(0.06)
        assert result.error is None
        assert outputs.values["canary-passed"] == "false"
    
    def test_threshold_is_inclusive(self):
        outputs = OutputWriter()
        gate = make_gate(FakeMetrics(requests=100, errors=5), outputs=outputs)
        
        result = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert result.passed
        assert outputs.values["canary-passed"] == "true"
    
    def test_queries_trailing_window_once(self):
        metrics = FakeMetrics(requests=10, errors=0)
        gate = make_gate(metrics)
        
        asyncio.run(gate.evaluate("smoltbot-gateway", 90, 0.05))
        
        assert len(metrics.calls) == 1
        name, start, end = metrics.calls[0]
        assert name == "smoltbot-gateway"
        assert end == FIXED_NOW
        assert end - start == timedelta(seconds=90)
    
    def test_query_failure_fails_open(self):
        summary = SummaryWriter()
        outputs = OutputWriter()
        metrics = FakeMetrics(error=MetricsQueryError("Cloudflare GraphQL API returned 503"))
        gate = make_gate(metrics, summary=summary, outputs=outputs)
        
        result = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert result.passed
        assert result.sample is None
        assert "503" in result.error
        assert outputs.values["canary-passed"] == "true"
        assert any("**PASS** (fail-open)" in line for line in summary.lines)
    
    def test_internal_error_fails_open(self):
        summary = BrokenTableSummary()
        gate = make_gate(FakeMetrics(requests=100, errors=50), summary=summary)
        
        result = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert result.passed
        assert result.error.startswith("script error")
    
    def test_report_contents(self):
        summary = SummaryWriter()
        gate = make_gate(FakeMetrics(requests=200, errors=3), summary=summary)
        
        asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert summary.lines[0] == "## Canary Error Rate Check"
        assert "| Script | `smoltbot-gateway` |" in summary.lines
        assert "| Window | 60s |" in summary.lines
        assert "| Requests | 200 |" in summary.lines
        assert "| Errors | 3 |" in summary.lines
        assert "| Error Rate | 1.50% |" in summary.lines
        assert "| Threshold | 5.00% |" in summary.lines
        assert "| Result | **PASS** |" in summary.lines
    
    def test_zero_traffic_note(self):
        summary = SummaryWriter()
        gate = make_gate(FakeMetrics(), summary=summary)
        
        asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert any("No traffic observed" in line for line in summary.lines)
    
    def test_repeated_evaluation_is_identical(self):
        gate = make_gate(FakeMetrics(requests=100, errors=6))
        
        first = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        second = asyncio.run(gate.evaluate("smoltbot-gateway", 60, 0.05))
        
        assert first == second


class TestCanaryInputs:
    """Test suite for input validation"""
    
    @pytest.mark.parametrize("name,window,threshold", [
        ("", 60, 0.05),
        ("smoltbot-gateway", 0, 0.05),
        ("smoltbot-gateway", -5, 0.05),
        ("smoltbot-gateway", 60, 1.5),
        ("smoltbot-gateway", 60, -0.1),
    ])
    def test_invalid_inputs_raise_before_query(self, name, window, threshold):
        metrics = FakeMetrics()
        gate = make_gate(metrics)
        
        with pytest.raises(ConfigurationError):
            asyncio.run(gate.evaluate(name, window, threshold))
        
        assert metrics.calls == []
    
    def test_sample_passes(self):
        assert sample_passes(MetricsSample(0, 0), 0.0)
        assert sample_passes(MetricsSample(20, 1), 0.05)
        assert not sample_passes(MetricsSample(20, 2), 0.05)
