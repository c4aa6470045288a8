"""
Confidence Score Tests
Tests for the pre-approval deployment confidence scorer
"""

import pytest
import asyncio
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deploy_guard.deployment.risk_scorer import (
    RiskScorer,
    count_services_affected,
    is_dependency_file,
    is_test_file,
)
from deploy_guard.integrations.base import ChangeLookupError, ChangeSource, DeploymentHistory
from deploy_guard.models import ChangeDescriptor, DegradedReason
from deploy_guard.summary import OutputWriter, SummaryWriter


class FakeHistory(DeploymentHistory):
    """Deployment history returning a fixed age, or raising"""
    
    def __init__(self, days=1.0, error=None):
        self.days = days
        self.error = error
        self.calls = []
    
    async def days_since_last_production_deploy(self, repository):
        self.calls.append(repository)
        if self.error:
            raise self.error
        return self.days


class FakeChanges(ChangeSource):
    """Change source returning a canned descriptor, or raising"""
    
    def __init__(self, lines=10, paths=(), error=None):
        self.lines = lines
        self.paths = paths
        self.error = error
        self.calls = []
    
    async def get_change(self, repository, commit_ref, affected_service_count=0):
        self.calls.append((repository, commit_ref, affected_service_count))
        if self.error:
            raise self.error
        return ChangeDescriptor(
            deployable_name=repository,
            commit_ref=commit_ref,
            diff_total_lines=self.lines,
            changed_file_paths=self.paths,
            affected_service_count=affected_service_count,
        )


def change(lines=100, paths=(), services=0):
    return ChangeDescriptor(
        deployable_name="smoltbot",
        commit_ref="abc1234def5678",
        diff_total_lines=lines,
        changed_file_paths=paths,
        affected_service_count=services,
    )


def headings(summary):
    return [line for line in summary.lines if line == "## Deployment Confidence Score"]


class TestRiskScorer:
    """Test suite for factor evaluation"""
    
    @pytest.fixture
    def summary(self):
        return SummaryWriter()
    
    @pytest.fixture
    def scorer(self, summary):
        return RiskScorer(summary=summary, history=FakeHistory(days=1.0))
    
    def test_small_change_is_clamped_to_100(self, scorer):
        """A 30-line change earns +10 but the score stays at 100"""
        result = asyncio.run(scorer.score(change(lines=30)))
        
        assert result.score == 100
        assert not result.degraded
        assert [(f.label, f.score_delta) for f in result.factors] == [
            ("Small change (<50 lines)", 10)
        ]
    
    def test_large_change_with_many_services(self, scorer):
        result = asyncio.run(scorer.score(change(lines=600, services=4)))
        
        assert result.score == 65
        assert [f.label for f in result.factors] == [
            "Large change (>500 lines)",
            "4 services affected (>3)",
        ]
        assert [f.score_delta for f in result.factors] == [-20, -15]
    
    def test_medium_change_has_no_signals(self, scorer, summary):
        result = asyncio.run(scorer.score(change(lines=200, paths=("src/index.ts",))))
        
        assert result.score == 100
        assert result.factors == ()
        assert "_No risk signals detected._" in summary.lines
    
    def test_files_outside_source_lists_three_examples(self, scorer):
        paths = (
            "README.md",
            "docs/setup.md",
            "scripts/deploy.sh",
            "wrangler.toml",
            "src/index.ts",
        )
        result = asyncio.run(scorer.score(change(paths=paths)))
        
        assert result.score == 90
        assert result.factors[0].label == (
            "Files outside src/ (README.md, docs/setup.md, scripts/deploy.sh...)"
        )
        assert result.factors[0].score_delta == -10
    
    def test_outside_source_without_ellipsis(self, scorer):
        result = asyncio.run(scorer.score(change(paths=("README.md",))))
        
        assert result.factors[0].label == "Files outside src/ (README.md)"
    
    def test_test_files_outside_source_are_ignored(self, scorer):
        paths = ("tests/gateway.test.ts", "e2e/login.spec.js")
        result = asyncio.run(scorer.score(change(paths=paths)))
        
        assert result.score == 100
        assert result.factors == ()
    
    def test_dependency_changes_list_every_match(self, scorer):
        paths = ("package.json", "pnpm-lock.yaml", "src/index.ts")
        result = asyncio.run(scorer.score(change(paths=paths)))
        
        labels = [f.label for f in result.factors]
        assert labels == [
            "Files outside src/ (package.json, pnpm-lock.yaml)",
            "Dependency changes (package.json, pnpm-lock.yaml)",
        ]
        assert result.score == 75
    
    def test_nested_lockfile_counts_as_dependency_change(self):
        assert is_dependency_file("packages/sdk/package-lock.json")
        assert not is_dependency_file("src/package.ts")
    
    def test_deploy_flags_count_only_services(self, scorer):
        flags = {"smoltbot": True, "mnemom-api": True, "aip-sdk": True, "hunter": False}
        result = asyncio.run(scorer.score(change(services=0), deploy_flags=flags))
        
        assert result.factors[0].label == "2 services affected (2-3)"
        assert result.score == 95
    
    def test_single_service_has_no_penalty(self, scorer):
        result = asyncio.run(scorer.score(change(services=1)))
        assert result.score == 100
    
    def test_stale_deploy_reports_whole_days(self, summary):
        scorer = RiskScorer(summary=summary, history=FakeHistory(days=10.6))
        result = asyncio.run(scorer.score(change()))
        
        assert result.factors[-1].label == ">7 days since last prod deploy (11d)"
        assert result.score == 95
    
    def test_never_deployed_counts_as_stale(self, summary):
        scorer = RiskScorer(summary=summary, history=FakeHistory(days=float("inf")))
        result = asyncio.run(scorer.score(change()))
        
        assert result.factors[-1].label == ">7 days since last prod deploy (never)"
        assert result.score == 95
    
    def test_history_failure_is_neutral(self, summary):
        history = FakeHistory(error=ChangeLookupError("GitHub API 502"))
        scorer = RiskScorer(summary=summary, history=history)
        result = asyncio.run(scorer.score(change()))
        
        assert result.score == 100
        assert not result.degraded
        assert result.factors[-1].label == "Last prod deploy time unavailable"
        assert result.factors[-1].score_delta is None
        assert result.factors[-1].impact == "n/a"
    
    def test_score_always_within_bounds(self, summary):
        """Every combination of signals stays inside [0, 100]"""
        worst_paths = ("package.json", "yarn.lock", "infra/main.tf", "README.md")
        scorer = RiskScorer(summary=summary, history=FakeHistory(days=30))
        
        for lines in (0, 30, 49, 50, 500, 501, 10_000):
            for services in (0, 1, 2, 3, 4, 7):
                for paths in ((), ("src/a.ts",), worst_paths):
                    result = asyncio.run(scorer.score(change(lines, paths, services)))
                    assert 0 <= result.score <= 100
    
    def test_report_table(self, scorer, summary):
        asyncio.run(scorer.score(change(lines=600, services=4)))
        
        assert summary.lines[0] == "## Deployment Confidence Score"
        assert "**Score: 65** / 100" in summary.lines
        assert "> Source: `smoltbot` @ `abc1234`" in summary.lines
        assert "| Signal | Impact |" in summary.lines
        assert "| Large change (>500 lines) | -20 |" in summary.lines
        assert "| 4 services affected (>3) | -15 |" in summary.lines
        assert len(headings(summary)) == 1
    
    def test_missing_commit_ref_is_neutral(self, scorer, summary):
        result = asyncio.run(scorer.score(
            ChangeDescriptor(deployable_name="smoltbot", commit_ref="", diff_total_lines=30)
        ))
        
        assert result.score == 50
        assert result.degraded
        assert result.degraded_reason == DegradedReason.NO_COMMIT
        assert result.factors == ()
        assert len(headings(summary)) == 1
        assert not any(line.startswith("> Source:") for line in summary.lines)
    
    def test_missing_repository_identity_is_neutral(self, scorer, summary):
        result = asyncio.run(scorer.score(
            ChangeDescriptor(deployable_name="", commit_ref="", diff_total_lines=600)
        ))
        
        assert result.score == 50
        assert result.degraded
        assert result.factors == ()
        assert len(headings(summary)) == 1
    
    def test_explicit_repository_supplies_identity(self, summary):
        history = FakeHistory(days=1.0)
        scorer = RiskScorer(summary=summary, history=history)
        result = asyncio.run(scorer.score(
            ChangeDescriptor(deployable_name="", commit_ref="abc1234", diff_total_lines=30),
            repository="smoltbot",
        ))
        
        assert not result.degraded
        assert history.calls == ["smoltbot"]
    
    def test_repeated_scoring_is_identical(self, scorer):
        first = asyncio.run(scorer.score(change(lines=600, paths=("README.md",), services=2)))
        second = asyncio.run(scorer.score(change(lines=600, paths=("README.md",), services=2)))
        
        assert first == second


class TestScoreCommit:
    """Test suite for the end-to-end commit scoring path"""
    
    @pytest.fixture
    def summary(self):
        return SummaryWriter()
    
    def test_missing_commit_is_neutral(self, summary):
        outputs = OutputWriter()
        changes = FakeChanges()
        scorer = RiskScorer(summary=summary, changes=changes, outputs=outputs)
        
        result = asyncio.run(scorer.score_commit("smoltbot", None, {}))
        
        assert result.score == 50
        assert result.degraded
        assert result.degraded_reason == DegradedReason.NO_COMMIT
        assert result.factors == ()
        assert changes.calls == []
        assert outputs.values["confidence-score"] == "50"
        assert len(headings(summary)) == 1
        assert any("No source commit available" in line for line in summary.lines)
    
    def test_missing_repository_is_neutral(self, summary):
        scorer = RiskScorer(summary=summary, changes=FakeChanges())
        result = asyncio.run(scorer.score_commit(None, "abc1234", {}))
        
        assert result.degraded_reason == DegradedReason.NO_COMMIT
    
    def test_upstream_failure_is_neutral(self, summary):
        changes = FakeChanges(error=ChangeLookupError("GitHub API 404: /repos/x"))
        scorer = RiskScorer(summary=summary, changes=changes, history=FakeHistory())
        
        result = asyncio.run(scorer.score_commit("smoltbot", "abc1234", {}))
        
        assert result.score == 50
        assert result.degraded
        assert result.degraded_reason == DegradedReason.UPSTREAM_FAILURE
        assert "GitHub API 404" in result.detail
        assert result.factors == ()
        assert len(headings(summary)) == 1
        assert any("Analysis unavailable" in line for line in summary.lines)
    
    def test_unexpected_error_never_escapes(self, summary):
        changes = FakeChanges(error=RuntimeError("boom"))
        scorer = RiskScorer(summary=summary, changes=changes)
        
        result = asyncio.run(scorer.score_commit("smoltbot", "abc1234", {}))
        
        assert result.score == 50
        assert result.degraded_reason == DegradedReason.UPSTREAM_FAILURE
    
    def test_commit_is_scored_with_service_count_from_flags(self, summary):
        changes = FakeChanges(lines=20, paths=("src/index.ts",))
        history = FakeHistory(days=2)
        outputs = OutputWriter()
        scorer = RiskScorer(summary=summary, changes=changes, history=history, outputs=outputs)
        flags = {"smoltbot": True, "mnemom-api": True, "mnemom-risk": True}
        
        result = asyncio.run(scorer.score_commit("smoltbot", "abc1234def", flags))
        
        assert changes.calls == [("smoltbot", "abc1234def", 3)]
        assert history.calls == ["smoltbot"]
        assert [f.score_delta for f in result.factors] == [10, -5]
        assert result.score == 100
        assert outputs.values["confidence-score"] == "100"
        assert len(headings(summary)) == 1


class TestHelpers:
    """Test suite for path and flag helpers"""
    
    def test_is_test_file(self):
        assert is_test_file("src/a.test.ts")
        assert is_test_file("lib/b.spec.js")
        assert not is_test_file("src/testing.ts")
    
    def test_count_services_requires_literal_true(self):
        flags = {"smoltbot": "true", "hunter": True, "mnemom-website": 1}
        assert count_services_affected(flags) == 1
    
    def test_count_services_with_custom_set(self):
        flags = {"api": True, "web": True, "sdk": True}
        assert count_services_affected(flags, ("api", "web")) == 2
    
    def test_negative_diff_rejected(self):
        with pytest.raises(ValueError):
            ChangeDescriptor(deployable_name="x", commit_ref="y", diff_total_lines=-1)
