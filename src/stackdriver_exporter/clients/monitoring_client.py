"""Google Cloud Monitoring REST client with timeout, retry and auth layers."""

import asyncio
import aiohttp
import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..config.settings import RetryConfig
from ..exceptions import APIError, TransientAPIError
from ..utils.retry import exponential_backoff
from .auth import (
    MONITORING_READ_SCOPE,
    PROJECTS_READ_SCOPE,
    CredentialsAuthorizer,
    load_default_credentials,
)

logger = logging.getLogger(__name__)

MONITORING_API_URL = "https://monitoring.googleapis.com/v3"
RESOURCE_MANAGER_API_URL = "https://cloudresourcemanager.googleapis.com/v1"


def format_timestamp(value: datetime) -> str:
    """RFC 3339 UTC timestamp as expected by the API."""
    return value.strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def _error_message(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body[:200] or "empty response"
    if isinstance(payload, dict) and isinstance(payload.get('error'), dict):
        return payload['error'].get('message', body[:200])
    return body[:200]


class MonitoringClient:
    """
    Read-only client for the Cloud Monitoring and Resource Manager APIs.

    Every call goes through the same chain: an overall timeout, then the
    retry loop, then bearer token authorization of each attempt. All calls
    are GETs, so retrying them blindly is safe.
    """

    def __init__(
        self,
        authorizer: CredentialsAuthorizer,
        retry_config: RetryConfig,
        monitoring_url: str = MONITORING_API_URL,
        resource_manager_url: str = RESOURCE_MANAGER_API_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.authorizer = authorizer
        self.retry_config = retry_config
        self.monitoring_url = monitoring_url.rstrip('/')
        self.resource_manager_url = resource_manager_url.rstrip('/')
        self.session: Optional[aiohttp.ClientSession] = None
        self._retry_statuses = frozenset(retry_config.retry_statuses)
        self._sleep = sleep

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.retry_config.http_timeout),
                connector=aiohttp.TCPConnector(limit=100, limit_per_host=30)
            )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def is_retryable(self, status: int) -> bool:
        return status in self._retry_statuses

    async def _send(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Single authorized attempt."""
        headers = await self.authorizer.authorize({'Accept': 'application/json'})

        async with self.session.get(url, params=params, headers=headers) as response:
            if response.status >= 400:
                message = _error_message(await response.text())
                error_cls = TransientAPIError if self.is_retryable(response.status) else APIError
                raise error_cls(response.status, message, url)

            return await response.json(content_type=None)

    async def _get(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make an HTTP GET with timeout and retry logic."""
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        async def _request():
            return await self._send(url, params)

        return await asyncio.wait_for(
            exponential_backoff(
                _request,
                max_retries=self.retry_config.max_retries,
                backoff_jitter=self.retry_config.backoff_jitter,
                max_backoff=self.retry_config.max_backoff,
                sleep=self._sleep
            ),
            timeout=self.retry_config.http_timeout
        )

    async def _paginate(self, url: str, params: Dict[str, Any], field: str) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield the ``field`` list of every page until ``nextPageToken`` runs out."""
        params = dict(params)
        while True:
            page = await self._get(url, params) or {}
            yield page.get(field, [])

            next_page_token = page.get('nextPageToken')
            if not next_page_token:
                return
            params['pageToken'] = next_page_token

    async def list_metric_descriptors(self, project_id: str, filter_: str) -> List[Dict[str, Any]]:
        """All metric descriptors of a project matching a filter."""
        url = f"{self.monitoring_url}/projects/{project_id}/metricDescriptors"
        logger.debug(f"Listing metric descriptors for {project_id}: {filter_}")

        descriptors = []
        async for page in self._paginate(url, {'filter': filter_}, 'metricDescriptors'):
            descriptors.extend(page)
        return descriptors

    async def iter_time_series(
        self,
        project_id: str,
        filter_: str,
        start_time: datetime,
        end_time: datetime
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield pages of time series of a project within an interval."""
        url = f"{self.monitoring_url}/projects/{project_id}/timeSeries"
        params = {
            'filter': filter_,
            'interval.startTime': format_timestamp(start_time),
            'interval.endTime': format_timestamp(end_time),
        }

        async for page in self._paginate(url, params, 'timeSeries'):
            yield page

    async def list_projects(self, filter_: str) -> List[str]:
        """Project IDs matching a Resource Manager search filter."""
        url = f"{self.resource_manager_url}/projects"

        project_ids = []
        async for page in self._paginate(url, {'filter': filter_}, 'projects'):
            project_ids.extend(p['projectId'] for p in page if p.get('projectId'))

        logger.info(f"Discovered {len(project_ids)} projects matching filter {filter_!r}")
        return project_ids


def create_monitoring_client(retry_config: RetryConfig) -> MonitoringClient:
    """
    Build a client from Application Default Credentials.

    Raises:
        AuthError: no credentials can be discovered
    """
    credentials, _ = load_default_credentials([MONITORING_READ_SCOPE, PROJECTS_READ_SCOPE])
    return MonitoringClient(CredentialsAuthorizer(credentials), retry_config)
