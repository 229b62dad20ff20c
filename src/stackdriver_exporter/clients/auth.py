"""Google credential discovery and request authorization."""

import asyncio
import logging
from typing import Dict, Iterable, Optional, Tuple

import google.auth
from google.auth import exceptions as google_exceptions
from google.auth.credentials import Credentials
from google.auth.transport.requests import Request

from ..exceptions import AuthError

logger = logging.getLogger(__name__)

MONITORING_READ_SCOPE = "https://www.googleapis.com/auth/monitoring.read"
PROJECTS_READ_SCOPE = "https://www.googleapis.com/auth/cloudplatformprojects.readonly"
COMPUTE_SCOPE = "https://www.googleapis.com/auth/compute"


def load_default_credentials(scopes: Iterable[str]) -> Tuple[Credentials, Optional[str]]:
    """Find Application Default Credentials restricted to ``scopes``."""
    try:
        return google.auth.default(scopes=list(scopes))
    except google_exceptions.DefaultCredentialsError as e:
        raise AuthError(f"Error finding Google default credentials: {e}") from e


def discover_default_project() -> str:
    """Return the project tied to the default credentials."""
    _, project_id = load_default_credentials([COMPUTE_SCOPE])
    if not project_id:
        raise AuthError("Unable to identify the gcloud project. Got empty string")
    return project_id


class CredentialsAuthorizer:
    """Applies a bearer token to outgoing requests, refreshing it when stale."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        # Created on first use so the authorizer can be built off the event loop
        self._lock: Optional[asyncio.Lock] = None

    async def authorize(self, headers: Dict[str, str]) -> Dict[str, str]:
        if not self.credentials.valid:
            if self._lock is None:
                self._lock = asyncio.Lock()
            async with self._lock:
                # Another request may have refreshed while we waited
                if not self.credentials.valid:
                    await self._refresh()
        self.credentials.apply(headers)
        return headers

    async def _refresh(self):
        logger.debug("Refreshing Google access token")
        try:
            # google-auth refresh is blocking
            await asyncio.to_thread(self.credentials.refresh, Request())
        except (google_exceptions.RefreshError, google_exceptions.TransportError) as e:
            raise AuthError(f"Unable to refresh Google access token: {e}") from e
