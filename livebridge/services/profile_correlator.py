"""
Profile correlation: fetch the profile behind the selected event
"""

import asyncio
from typing import Any, Callable, Optional

import httpx
import orjson
import structlog
from pydantic import BaseModel

from ..credentials.models import TenantLookupConfig
from ..errors import ProfileLookupError
from ..event_models import CanonicalEvent

log = structlog.get_logger()

# Opaque JSON document returned by the lookup endpoint
ProfileRecord = Any


class ProfileLookupClient:
    """
    Client for the profile lookup side channel
    """

    def __init__(
        self,
        config: TenantLookupConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        campaign_prefix: str = "VIZVRM",
        timeout: float = 10.0,
    ):
        """
        Initialize lookup client

        Args:
            config: Tenant lookup settings (client id, API key, endpoint)
            http_client: Shared client (created and owned here if not provided)
            campaign_prefix: Prefix combined with the client id into the campaign
            timeout: Request timeout in seconds for an owned client
        """
        self._config = config
        self._campaign = f"{campaign_prefix}{config.client_id}"
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        return f"{self._config.api_endpoint}/api/v1/getProfileAndSegments"

    async def fetch(self, identifier: str) -> ProfileRecord:
        """
        Fetch the profile for an identifier

        Raises:
            ProfileLookupError: On transport errors, non-2xx responses, or a
                body that is not JSON
        """
        params = {
            "campaign": self._campaign,
            "key": identifier,
            "lock_type": "none",
            "auth_key": self._config.api_key,
            "lookup": "multi",
        }
        try:
            response = await self._http.get(self.url, params=params)
        except httpx.HTTPError as e:
            log.error("profile.lookup_unreachable", identifier=identifier, error=str(e))
            raise ProfileLookupError(f"Failed to fetch profile data: {e}") from e

        if not response.is_success:
            log.error("profile.lookup_failed", identifier=identifier, status=response.status_code, body_preview=response.text[:200])
            raise ProfileLookupError(
                f"SST API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise ProfileLookupError("Profile response is not valid JSON", status_code=response.status_code) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


class ProfilePanel(BaseModel):
    """What the profile panel currently shows."""
    identifier: Optional[str] = None
    loading: bool = False
    record: ProfileRecord = None
    error: Optional[str] = None


def extract_identifier(event: Optional[CanonicalEvent], field: str = "id") -> Optional[str]:
    if event is None:
        return None
    value = (event.properties or {}).get(field)
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    value = str(value).strip()
    return value or None


class ProfileCorrelator:
    """
    Fetches the profile for each newly selected event.

    Each selection supersedes the previous one. Fetches already in flight are
    left to finish but their result is dropped unless it belongs to the
    latest selection, even when an older one had the same identifier.
    Nothing is cached, so a re-selection fetches again.
    """

    def __init__(
        self,
        lookup: Optional[ProfileLookupClient],
        on_update: Optional[Callable[[ProfilePanel], None]] = None,
        identifier_field: str = "id",
    ):
        self._lookup = lookup
        self._on_update = on_update
        self._field = identifier_field
        self._current: Optional[str] = None
        # Bumped on every selection; only the newest lookup may commit
        self._generation = 0
        self._panel = ProfilePanel()
        self._tasks: set[asyncio.Task] = set()

    @property
    def panel(self) -> ProfilePanel:
        return self._panel

    @property
    def current_identifier(self) -> Optional[str]:
        return self._current

    async def fetch_for(self, identifier: str) -> ProfileRecord:
        """
        Fetch the profile record for an identifier

        Raises:
            ProfileLookupError: If the tenant has no lookup settings or the
                lookup fails
        """
        if self._lookup is None:
            raise ProfileLookupError("Tenant missing required API configuration")
        log.info("profile.lookup_started", identifier=identifier)
        return await self._lookup.fetch(identifier)

    def on_selection(self, event: Optional[CanonicalEvent]) -> None:
        """Selection listener: start (or skip) the lookup for ``event``."""
        identifier = extract_identifier(event, self._field)
        self._current = identifier
        self._generation += 1
        if identifier is None:
            self._set_panel(ProfilePanel())
            return
        self._set_panel(ProfilePanel(identifier=identifier, loading=True))
        task = asyncio.create_task(self._resolve(identifier, self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def dismiss_error(self) -> None:
        if self._panel.error is not None:
            self._set_panel(self._panel.model_copy(update={"error": None}))

    async def close(self) -> None:
        """Cancel outstanding lookups (session teardown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._current = None
        self._generation += 1
        self._panel = ProfilePanel()

    async def _resolve(self, identifier: str, generation: int) -> None:
        try:
            record = await self.fetch_for(identifier)
        except ProfileLookupError as e:
            if generation != self._generation:
                log.info("profile.stale_error_discarded", identifier=identifier)
                return
            self._set_panel(ProfilePanel(identifier=identifier, error=str(e)))
            return

        if generation != self._generation:
            log.info("profile.stale_result_discarded", identifier=identifier, current=self._current)
            return
        log.info("profile.lookup_succeeded", identifier=identifier)
        self._set_panel(ProfilePanel(identifier=identifier, record=record))

    def _set_panel(self, panel: ProfilePanel) -> None:
        self._panel = panel
        if self._on_update is not None:
            self._on_update(panel)
