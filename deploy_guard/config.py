"""
Per-invocation Configuration

Each subcommand builds its own config object from explicit arguments or the
environment. Nothing here is global; the trigger passes configuration in on
every run.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from deploy_guard.constants import (
    DEFAULT_ENVIRONMENT,
    DEFAULT_ERROR_THRESHOLD,
    DEFAULT_MONITOR_DURATION_SECONDS,
    DEFAULT_OBSERVATION_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_ROLLBACK_REF,
    DEFAULT_ROLLBACK_WORKFLOW,
    DEFAULT_SERVICE_DEPLOYABLES,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Missing or invalid operator input. Fatal; never a safety signal."""


def parse_deploy_flags(raw: Optional[str]) -> Dict[str, bool]:
    """Parse the DEPLOY_FLAGS JSON object. Invalid input yields no flags."""
    if not raw:
        return {}
    try:
        flags = json.loads(raw)
    except ValueError:
        logger.warning("[CONFIG] DEPLOY_FLAGS is not valid JSON, ignoring")
        return {}
    if not isinstance(flags, dict):
        logger.warning("[CONFIG] DEPLOY_FLAGS is not a JSON object, ignoring")
        return {}
    return flags


def parse_service_deployables(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_SERVICE_DEPLOYABLES
    return tuple(name.strip() for name in raw.split(",") if name.strip())


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}")


def _check_threshold(threshold: float):
    if not 0.0 <= threshold <= 1.0:
        raise ConfigurationError(f"error threshold must be within [0, 1], got {threshold}")


@dataclass(frozen=True)
class ScoreConfig:
    """Inputs for the confidence score step"""
    repository: Optional[str] = None
    commit_ref: Optional[str] = None
    deploy_flags: Dict[str, bool] = field(default_factory=dict)
    service_deployables: Tuple[str, ...] = DEFAULT_SERVICE_DEPLOYABLES
    github_owner: Optional[str] = None
    github_token: Optional[str] = None
    
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ScoreConfig":
        env = os.environ if env is None else env
        return cls(
            repository=env.get("SOURCE_REPO") or None,
            commit_ref=env.get("SOURCE_REF") or None,
            deploy_flags=parse_deploy_flags(env.get("DEPLOY_FLAGS")),
            service_deployables=parse_service_deployables(env.get("SERVICE_DEPLOYABLES")),
            github_owner=env.get("GITHUB_OWNER") or None,
            github_token=env.get("GITHUB_TOKEN") or None,
        )


@dataclass(frozen=True)
class CanaryConfig:
    """Inputs for the canary error rate check"""
    script_name: Optional[str] = None
    observation_seconds: int = DEFAULT_OBSERVATION_SECONDS
    error_threshold: float = DEFAULT_ERROR_THRESHOLD
    
    def validate(self):
        if not self.script_name:
            raise ConfigurationError("SCRIPT_NAME is required")
        if self.observation_seconds <= 0:
            raise ConfigurationError("observation window must be positive")
        _check_threshold(self.error_threshold)
    
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CanaryConfig":
        env = os.environ if env is None else env
        return cls(
            script_name=env.get("SCRIPT_NAME") or None,
            observation_seconds=_int(env, "OBSERVATION_SECONDS", DEFAULT_OBSERVATION_SECONDS),
            error_threshold=_float(env, "ERROR_THRESHOLD", DEFAULT_ERROR_THRESHOLD),
        )


@dataclass(frozen=True)
class MonitorConfig:
    """Inputs for the post-deploy monitor"""
    script_name: Optional[str] = None
    service_name: Optional[str] = None
    environment: str = DEFAULT_ENVIRONMENT
    error_threshold: float = DEFAULT_ERROR_THRESHOLD
    monitor_duration_seconds: int = DEFAULT_MONITOR_DURATION_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    
    def validate(self):
        if not self.script_name or not self.service_name:
            raise ConfigurationError("SCRIPT_NAME and SERVICE_NAME are required")
        if not self.environment:
            raise ConfigurationError("ENVIRONMENT must not be empty")
        if self.monitor_duration_seconds <= 0 or self.poll_interval_seconds <= 0:
            raise ConfigurationError("monitor duration and poll interval must be positive")
        _check_threshold(self.error_threshold)
    
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        env = os.environ if env is None else env
        return cls(
            script_name=env.get("SCRIPT_NAME") or None,
            service_name=env.get("SERVICE_NAME") or None,
            environment=env.get("ENVIRONMENT") or DEFAULT_ENVIRONMENT,
            error_threshold=_float(env, "ERROR_THRESHOLD", DEFAULT_ERROR_THRESHOLD),
            monitor_duration_seconds=_int(env, "MONITOR_DURATION_SECONDS", DEFAULT_MONITOR_DURATION_SECONDS),
            poll_interval_seconds=_int(env, "POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
        )


@dataclass(frozen=True)
class RollbackTarget:
    """Where the rollback workflow lives"""
    repository: Optional[str] = None
    workflow: str = DEFAULT_ROLLBACK_WORKFLOW
    ref: str = DEFAULT_ROLLBACK_REF
    github_token: Optional[str] = None
    
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RollbackTarget":
        env = os.environ if env is None else env
        return cls(
            repository=env.get("ROLLBACK_REPO") or None,
            workflow=env.get("ROLLBACK_WORKFLOW") or DEFAULT_ROLLBACK_WORKFLOW,
            ref=env.get("ROLLBACK_REF") or DEFAULT_ROLLBACK_REF,
            github_token=env.get("GITHUB_TOKEN") or None,
        )
