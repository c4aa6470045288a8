#!/usr/bin/env python3
"""
deploy-guard command line

Entry point invoked by the deploy pipeline at three stages:

    deploy-guard confidence-score       # after staging, before approval
    deploy-guard check-error-rate       # during the canary
    deploy-guard post-deploy-monitor    # after promotion to 100%

Every option defaults from the environment (a .env file is loaded if
present). Reports go to $GITHUB_STEP_SUMMARY, discrete values to
$GITHUB_OUTPUT.

Exit Codes:
    0 - No safety concern found (including every fail-open path)
    1 - Confirmed error spike (post-deploy-monitor) or configuration error
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv

from deploy_guard.config import (
    CanaryConfig,
    ConfigurationError,
    MonitorConfig,
    RollbackTarget,
    ScoreConfig,
    parse_deploy_flags,
)
from deploy_guard.deployment import CanaryGate, RiskScorer, RollbackSupervisor
from deploy_guard.integrations import CloudflareMetricsSource, GitHubClient, GitHubWorkflowDispatcher
from deploy_guard.logging_config import setup_logging
from deploy_guard.metrics import push_metrics
from deploy_guard.summary import OutputWriter, SummaryWriter

logger = logging.getLogger("deploy_guard.cli")


# ============================================================================
# Subcommands
# ============================================================================

def _env_without(**overrides) -> Dict[str, str]:
    """The environment minus variables whose command line flag was given"""
    env = dict(os.environ)
    for key, value in overrides.items():
        if value is not None:
            env.pop(key, None)
    return env


async def run_confidence_score(args) -> int:
    config = ScoreConfig.from_env()
    repository = args.repo or config.repository
    commit_ref = args.ref or config.commit_ref
    deploy_flags = parse_deploy_flags(args.deploy_flags) if args.deploy_flags else config.deploy_flags
    
    client = GitHubClient(token=config.github_token, owner=config.github_owner)
    scorer = RiskScorer(
        summary=SummaryWriter.from_env(),
        history=client,
        changes=client,
        service_deployables=config.service_deployables,
        outputs=OutputWriter.from_env(),
    )
    await scorer.score_commit(repository, commit_ref, deploy_flags)
    # Advisory only: the score never fails the job
    return 0


async def run_check_error_rate(args) -> int:
    env_config = CanaryConfig.from_env(_env_without(
        OBSERVATION_SECONDS=args.window,
        ERROR_THRESHOLD=args.threshold,
    ))
    config = CanaryConfig(
        script_name=args.script or env_config.script_name,
        observation_seconds=args.window if args.window is not None else env_config.observation_seconds,
        error_threshold=args.threshold if args.threshold is not None else env_config.error_threshold,
    )
    config.validate()
    
    gate = CanaryGate(
        metrics=CloudflareMetricsSource(),
        summary=SummaryWriter.from_env(),
        outputs=OutputWriter.from_env(),
    )
    await gate.evaluate(config.script_name, config.observation_seconds, config.error_threshold)
    # The verdict travels through the step output, not the exit code
    return 0


async def run_post_deploy_monitor(args) -> int:
    env_config = MonitorConfig.from_env(_env_without(
        ERROR_THRESHOLD=args.threshold,
        MONITOR_DURATION_SECONDS=args.duration,
        POLL_INTERVAL_SECONDS=args.interval,
    ))
    config = MonitorConfig(
        script_name=args.script or env_config.script_name,
        service_name=args.service or env_config.service_name,
        environment=args.environment or env_config.environment,
        error_threshold=args.threshold if args.threshold is not None else env_config.error_threshold,
        monitor_duration_seconds=args.duration if args.duration is not None else env_config.monitor_duration_seconds,
        poll_interval_seconds=args.interval if args.interval is not None else env_config.poll_interval_seconds,
    )
    target = RollbackTarget.from_env()
    
    supervisor = RollbackSupervisor(
        metrics=CloudflareMetricsSource(),
        dispatcher=GitHubWorkflowDispatcher(
            repository=target.repository,
            token=target.github_token,
            workflow=target.workflow,
            ref=target.ref,
        ),
        summary=SummaryWriter.from_env(),
        config=config,
        outputs=OutputWriter.from_env(),
    )
    outcome = await supervisor.run()
    return outcome.exit_code


COMMANDS = {
    "confidence-score": run_confidence_score,
    "check-error-rate": run_check_error_rate,
    "post-deploy-monitor": run_post_deploy_monitor,
}


# ============================================================================
# Argument parsing
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-guard",
        description="Deployment confidence scoring, canary gating and post-deploy rollback"
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)
    
    score = subparsers.add_parser("confidence-score", help="Score a change before production approval")
    score.add_argument("--repo", help="Source repository (SOURCE_REPO)")
    score.add_argument("--ref", help="Commit SHA (SOURCE_REF)")
    score.add_argument("--deploy-flags", help="JSON object of deployables in this run (DEPLOY_FLAGS)")
    
    canary = subparsers.add_parser("check-error-rate", help="Canary error rate gate")
    canary.add_argument("--script", help="Worker script name (SCRIPT_NAME)")
    canary.add_argument("--window", type=int, help="Observation window in seconds (OBSERVATION_SECONDS)")
    canary.add_argument("--threshold", type=float, help="Max error rate, 0-1 (ERROR_THRESHOLD)")
    
    monitor = subparsers.add_parser("post-deploy-monitor", help="Watch error rate after promotion")
    monitor.add_argument("--script", help="Worker script name (SCRIPT_NAME)")
    monitor.add_argument("--service", help="Service name for the rollback workflow (SERVICE_NAME)")
    monitor.add_argument("--environment", help="Target environment (ENVIRONMENT)")
    monitor.add_argument("--threshold", type=float, help="Max error rate, 0-1 (ERROR_THRESHOLD)")
    monitor.add_argument("--duration", type=int, help="Total monitor time in seconds (MONITOR_DURATION_SECONDS)")
    monitor.add_argument("--interval", type=int, help="Seconds between polls (POLL_INTERVAL_SECONDS)")
    
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    
    handler = COMMANDS[args.command]
    try:
        exit_code = asyncio.run(handler(args))
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    
    push_metrics(job=f"deploy_guard_{args.command.replace('-', '_')}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
