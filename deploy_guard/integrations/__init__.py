"""
Integrations - metrics backends, version control and workflow dispatch
"""

from deploy_guard.integrations.base import (
    ChangeLookupError,
    ChangeSource,
    DeploymentHistory,
    MetricsQueryError,
    MetricsSource,
    RollbackDispatcher,
)
from deploy_guard.integrations.cloudflare import CloudflareMetricsSource
from deploy_guard.integrations.github import GitHubClient, GitHubWorkflowDispatcher

__all__ = [
    "ChangeLookupError",
    "ChangeSource",
    "DeploymentHistory",
    "MetricsQueryError",
    "MetricsSource",
    "RollbackDispatcher",
    "CloudflareMetricsSource",
    "GitHubClient",
    "GitHubWorkflowDispatcher",
]
