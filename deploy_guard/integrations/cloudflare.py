"""
Cloudflare Workers Analytics
Reads worker request and error counts from the GraphQL Analytics API.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

from deploy_guard.constants import CLOUDFLARE_GRAPHQL_URL, HTTP_TIMEOUT_SECONDS
from deploy_guard.integrations.base import MetricsQueryError, MetricsSource
from deploy_guard.metrics import METRICS_QUERY_LATENCY, timed_operation
from deploy_guard.models import MetricsSample

logger = logging.getLogger(__name__)


ERROR_RATE_QUERY = """
query WorkerErrorRate($accountTag: String!, $scriptName: String!, $since: Time!, $until: Time!) {
  viewer {
    accounts(filter: { accountTag: $accountTag }) {
      workersInvocationsAdaptive(
        filter: {
          scriptName: $scriptName
          datetime_geq: $since
          datetime_leq: $until
        }
        limit: 1
      ) {
        sum {
          requests
          errors
        }
      }
    }
  }
}
"""


def _isoformat(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_invocations(payload: Dict) -> MetricsSample:
    """
    Turn a GraphQL response body into a sample.
    
    No invocation rows means the worker saw no traffic in the window.
    """
    if not isinstance(payload, dict):
        raise MetricsQueryError("Unexpected analytics response body")
    
    errors = payload.get("errors") or []
    if errors:
        messages = ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        raise MetricsQueryError(f"GraphQL errors: {messages}")
    
    try:
        accounts = ((payload.get("data") or {}).get("viewer") or {}).get("accounts") or []
        invocations = accounts[0].get("workersInvocationsAdaptive") if accounts else None
        if not invocations:
            return MetricsSample(request_count=0, error_count=0)
        
        totals = invocations[0]["sum"]
        return MetricsSample(
            request_count=int(totals.get("requests") or 0),
            error_count=int(totals.get("errors") or 0),
        )
    except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
        raise MetricsQueryError(f"Malformed analytics response: {e}")


class CloudflareMetricsSource(MetricsSource):
    """
    MetricsSource backed by Cloudflare's workersInvocationsAdaptive dataset.
    
    Attributes:
        account_id: Cloudflare account tag
        api_token: token with Analytics:Read
        client: optional shared httpx.AsyncClient (a new one per query otherwise)
    """
    
    name = "cloudflare"
    
    def __init__(
        self,
        account_id: Optional[str] = None,
        api_token: Optional[str] = None,
        url: str = CLOUDFLARE_GRAPHQL_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.account_id = account_id if account_id is not None else os.getenv("CLOUDFLARE_ACCOUNT_ID")
        self.api_token = api_token if api_token is not None else os.getenv("CLOUDFLARE_API_TOKEN")
        self.url = url
        self.timeout = timeout
        self.client = client
    
    async def query(
        self,
        deployable_name: str,
        window_start: datetime,
        window_end: datetime
    ) -> MetricsSample:
        if not self.account_id or not self.api_token:
            raise MetricsQueryError("Cloudflare credentials not configured")
        
        body = {
            "query": ERROR_RATE_QUERY,
            "variables": {
                "accountTag": self.account_id,
                "scriptName": deployable_name,
                "since": _isoformat(window_start),
                "until": _isoformat(window_end),
            },
        }
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        
        with timed_operation(METRICS_QUERY_LATENCY, {"source": self.name}):
            try:
                if self.client is not None:
                    response = await self.client.post(self.url, json=body, headers=headers)
                else:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        response = await client.post(self.url, json=body, headers=headers)
            except httpx.HTTPError as e:
                raise MetricsQueryError(f"Cloudflare request failed: {type(e).__name__}: {e}")
        
        if response.status_code >= 400:
            raise MetricsQueryError(f"Cloudflare GraphQL API returned {response.status_code}")
        
        try:
            payload = response.json()
        except ValueError:
            raise MetricsQueryError("Cloudflare GraphQL API returned a non-JSON body")
        
        sample = parse_invocations(payload)
        logger.debug(
            f"[CLOUDFLARE] {deployable_name}: requests={sample.request_count} errors={sample.error_count}"
        )
        return sample
