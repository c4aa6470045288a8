"""
GitHub Integration
Commit diff statistics, production deployment history and rollback workflow
dispatch through the GitHub REST API.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from deploy_guard.constants import (
    DEFAULT_ROLLBACK_REF,
    DEFAULT_ROLLBACK_WORKFLOW,
    GITHUB_API_URL,
    GITHUB_API_VERSION,
    HTTP_TIMEOUT_SECONDS,
)
from deploy_guard.integrations.base import (
    ChangeLookupError,
    ChangeSource,
    DeploymentHistory,
    RollbackDispatcher,
)
from deploy_guard.models import ChangeDescriptor

logger = logging.getLogger(__name__)


def _headers(token: Optional[str]) -> Dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class GitHubClient(ChangeSource, DeploymentHistory):
    """
    Read-only GitHub REST client used by the confidence scorer.
    
    Repositories may be given as ``owner/name`` or as a bare name, in which
    case ``owner`` is prepended.
    """
    
    def __init__(
        self,
        token: Optional[str] = None,
        owner: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.token = token if token is not None else os.getenv("GITHUB_TOKEN")
        self.owner = owner if owner is not None else os.getenv("GITHUB_OWNER")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client
        self.now = now or (lambda: datetime.now(timezone.utc))
    
    def full_name(self, repository: str) -> str:
        if "/" in repository:
            return repository
        if not self.owner:
            raise ChangeLookupError(f"Cannot resolve repository {repository!r}: GITHUB_OWNER not set")
        return f"{self.owner}/{repository}"
    
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if self.client is not None:
                response = await self.client.get(url, headers=_headers(self.token), params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=_headers(self.token), params=params)
        except httpx.HTTPError as e:
            raise ChangeLookupError(f"GitHub API request failed: {type(e).__name__}: {e}")
        
        if response.status_code >= 400:
            raise ChangeLookupError(f"GitHub API {response.status_code}: {path}")
        
        try:
            return response.json()
        except ValueError:
            raise ChangeLookupError(f"GitHub API returned a non-JSON body: {path}")
    
    async def get_change(
        self,
        repository: str,
        commit_ref: str,
        affected_service_count: int = 0
    ) -> ChangeDescriptor:
        """Diff of ``commit_ref`` against its first parent"""
        full_name = self.full_name(repository)
        deployable = full_name.split("/", 1)[1]
        
        commit = await self._get(f"/repos/{full_name}/commits/{commit_ref}")
        if not isinstance(commit, dict):
            raise ChangeLookupError(f"Malformed commit response for {commit_ref}")
        parents = commit.get("parents") or []
        parent_sha = parents[0].get("sha") if parents and isinstance(parents[0], dict) else None
        
        if not parent_sha:
            # Root commit: nothing to compare against
            logger.info(f"[GITHUB] {full_name}@{commit_ref[:7]} has no parent, treating as empty diff")
            return ChangeDescriptor(
                deployable_name=deployable,
                commit_ref=commit_ref,
                affected_service_count=affected_service_count,
            )
        
        compare = await self._get(f"/repos/{full_name}/compare/{parent_sha}...{commit_ref}")
        files = (compare.get("files") if isinstance(compare, dict) else None) or []
        
        try:
            total = sum(int(f.get("additions", 0)) + int(f.get("deletions", 0)) for f in files)
            paths = tuple(f["filename"] for f in files)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ChangeLookupError(f"Malformed compare response: {e}")
        
        logger.info(f"[GITHUB] {full_name}@{commit_ref[:7]}: {len(paths)} files, {total} lines changed")
        
        return ChangeDescriptor(
            deployable_name=deployable,
            commit_ref=commit_ref,
            diff_total_lines=total,
            changed_file_paths=paths,
            affected_service_count=affected_service_count,
        )
    
    async def days_since_last_production_deploy(self, repository: str) -> float:
        full_name = self.full_name(repository)
        deployments = await self._get(
            f"/repos/{full_name}/deployments",
            params={"environment": "production", "per_page": 1},
        )
        if not deployments:
            return float("inf")
        
        try:
            last_deploy = _parse_timestamp(deployments[0]["created_at"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ChangeLookupError(f"Malformed deployments response: {e}")
        
        return (self.now() - last_deploy).total_seconds() / 86400


class GitHubWorkflowDispatcher(RollbackDispatcher):
    """
    Dispatches the rollback workflow via ``workflow_dispatch``.
    
    Failures are reported through the return value; nothing is retried.
    """
    
    def __init__(
        self,
        repository: Optional[str],
        token: Optional[str] = None,
        workflow: str = DEFAULT_ROLLBACK_WORKFLOW,
        ref: str = DEFAULT_ROLLBACK_REF,
        base_url: str = GITHUB_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.repository = repository
        self.token = token if token is not None else os.getenv("GITHUB_TOKEN")
        self.workflow = workflow
        self.ref = ref
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client
    
    async def trigger(self, service_name: str, environment: str) -> bool:
        if not self.token:
            logger.error("[GITHUB] GITHUB_TOKEN not set - cannot dispatch rollback")
            return False
        if not self.repository:
            logger.error("[GITHUB] ROLLBACK_REPO not set - cannot dispatch rollback")
            return False
        
        url = f"{self.base_url}/repos/{self.repository}/actions/workflows/{self.workflow}/dispatches"
        body = {
            "ref": self.ref,
            "inputs": {
                "service": service_name,
                "environment": environment,
            },
        }
        
        try:
            if self.client is not None:
                response = await self.client.post(url, headers=_headers(self.token), json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, headers=_headers(self.token), json=body)
        except httpx.HTTPError as e:
            logger.error(f"[GITHUB] Failed to dispatch rollback: {type(e).__name__}: {e}")
            return False
        
        if response.status_code != 204:
            logger.error(f"[GITHUB] Failed to dispatch rollback: {response.status_code} {response.text}")
            return False
        
        logger.info(f"[GITHUB] Rollback dispatched for {service_name} ({environment})")
        return True
