"""
Live session: one mounted view of a data source's event stream.

A session wires the pieces together for one (tenant, source) pair:

    SessionContext.bearer_token() -> ConnectionSupervisor.connect(token)
        -> live_events -> EventNormalizer -> EventLog -> ProfileCorrelator

and tears all of it down again on unmount.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from ..credentials.base import CredentialStore
from ..credentials.models import TenantLookupConfig
from ..errors import AuthFailure, CredentialsMissing, CredentialStoreUnavailable, NormalizationGap
from ..metrics import Metrics
from ..streaming.policy import ReconnectPolicy
from ..streaming.supervisor import ConnectionStatus, ConnectionSupervisor, SupervisorState
from ..streaming.transport import StreamTransport, Subscription
from .event_log import EventLog
from .normalizer import EventNormalizer
from .profile_correlator import ProfileCorrelator, ProfileLookupClient, ProfilePanel
from .token_exchanger import TokenExchanger
from .token_models import BearerToken

log = structlog.get_logger()

MISSING_CREDENTIALS_MESSAGE = (
    "Core API token not found. Submit the tenant's core API credentials to authenticate."
)

UpdateListener = Callable[[dict], None]


class SessionContext:
    """
    Credential context of one session.

    Passed explicitly to the session instead of living in shared state, so
    sessions for different tenants (or two sessions for the same tenant) are
    independent. The bearer token is cached here and nowhere else.
    """

    def __init__(
        self,
        tenant_id: str,
        credentials: CredentialStore,
        exchanger: TokenExchanger,
        metrics: Optional[Metrics] = None,
    ):
        self.tenant_id = tenant_id
        self.credentials = credentials
        self.exchanger = exchanger
        self.metrics = metrics
        self._token: Optional[BearerToken] = None

    @property
    def token(self) -> Optional[BearerToken]:
        return self._token

    async def bearer_token(self) -> BearerToken:
        """
        Return the cached token while valid, otherwise exchange for a new one.

        Raises:
            CredentialsMissing: If the tenant has no secondary identity
            AuthFailure: If the exchange fails (nothing is cached)
            CredentialStoreUnavailable: If the identity cannot be read
        """
        if self._token is not None and self._token.is_valid():
            return self._token
        self._token = None

        identity = await self._read("get_identity")
        if identity is None:
            log.warning("session.credentials_missing", tenant_id=self.tenant_id)
            raise CredentialsMissing(MISSING_CREDENTIALS_MESSAGE)

        try:
            token = await self.exchanger.acquire_token(identity)
        except AuthFailure as e:
            if self.metrics:
                self.metrics.record_token_exchange(e.reason.value)
            raise

        if self.metrics:
            self.metrics.record_token_exchange("success")
        self._token = token
        return token

    def invalidate_token(self) -> None:
        if self._token is not None:
            log.info("session.token_invalidated", tenant_id=self.tenant_id, token=self._token.preview)
        self._token = None

    async def lookup_config(self) -> Optional[TenantLookupConfig]:
        return await self._read("get_lookup_config")

    async def _read(self, getter: str):
        try:
            return await getattr(self.credentials, getter)(self.tenant_id)
        except Exception as e:
            log.error("session.credential_store_failed", tenant_id=self.tenant_id, operation=getter, error=str(e))
            raise CredentialStoreUnavailable(f"Credential store unavailable: {e}") from e


class SessionSnapshot(BaseModel):
    """Full state of a session as rendered by the UI."""
    session_id: str
    tenant_id: str
    source_id: str
    mounted_at: datetime
    status: ConnectionStatus
    error: Optional[str] = None
    events: list[dict[str, Any]] = Field(default_factory=list)
    event_count: int = 0
    selected_id: Optional[str] = None
    profile: ProfilePanel = Field(default_factory=ProfilePanel)
    normalization_gaps: int = 0


class LiveSession:
    """
    One live view over a data source.

    Provides:
    - Mount: token acquisition and connection
    - Event intake: normalization, logging, default selection
    - Profile correlation on every selection change
    - One re-exchange and reconnect after an auth rejection
    - Idempotent unmount
    """

    def __init__(
        self,
        session_id: str,
        context: SessionContext,
        source_id: str,
        transport: StreamTransport,
        stream_url: str,
        policy: Optional[ReconnectPolicy] = None,
        lookup_factory: Optional[Callable[[TenantLookupConfig], ProfileLookupClient]] = None,
        channel_type: str = "source",
        auth_param: str = "auth",
        metrics: Optional[Metrics] = None,
        max_reauth: int = 1,
    ):
        self.session_id = session_id
        self.context = context
        self.source_id = source_id
        self.metrics = metrics
        self.mounted_at = datetime.now(timezone.utc)

        self.event_log = EventLog()
        self.normalizer = EventNormalizer(on_gap=self._on_gap)
        self.supervisor = ConnectionSupervisor(
            transport,
            stream_url,
            Subscription(channel_id=source_id, channel_type=channel_type),
            policy=policy,
            on_batch=self._on_batch,
            on_status=self._on_status,
            auth_param=auth_param,
        )
        self.correlator: Optional[ProfileCorrelator] = None

        self._lookup_factory = lookup_factory or ProfileLookupClient
        self._lookup: Optional[ProfileLookupClient] = None
        self._listeners: list[UpdateListener] = []
        self._status = self.supervisor.status
        self._banner: Optional[str] = None
        self._max_reauth = max_reauth
        self._reauth_attempts = 0
        self._tasks: set[asyncio.Task] = set()
        self._mounted = False
        self._unmounted = False

    @property
    def unmounted(self) -> bool:
        return self._unmounted

    @property
    def error(self) -> Optional[str]:
        """Banner text: an auth/credential problem first, then the connection error."""
        return self._banner or self._status.error

    def add_listener(self, listener: UpdateListener) -> Callable[[], None]:
        """
        Register a callback for incremental updates.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def mount(self) -> None:
        """Acquire a token and open the stream. Failures end up in ``error``."""
        if self._mounted:
            return
        self._mounted = True
        log.info("session.mounting", session_id=self.session_id, tenant_id=self.context.tenant_id, source_id=self.source_id)

        try:
            config = await self.context.lookup_config()
        except CredentialStoreUnavailable:
            # Profile panel stays unconfigured; the token read below reports the outage
            config = None
        if config is not None:
            self._lookup = self._lookup_factory(config)
        self.correlator = ProfileCorrelator(self._lookup, on_update=self._on_profile)
        self.event_log.add_listener(self._on_selection)
        self.event_log.add_listener(self.correlator.on_selection)

        await self._connect_with_fresh_token()

    def select(self, message_id: str):
        """
        Explicitly select an event.

        Raises:
            EventNotFound: If the event is not in the log
        """
        return self.event_log.select(message_id)

    def dismiss_profile_error(self) -> None:
        if self.correlator is not None:
            self.correlator.dismiss_error()

    def snapshot(self, limit: Optional[int] = None) -> SessionSnapshot:
        selected = self.event_log.selected
        return SessionSnapshot(
            session_id=self.session_id,
            tenant_id=self.context.tenant_id,
            source_id=self.source_id,
            mounted_at=self.mounted_at,
            status=self._status,
            error=self.error,
            events=[event.to_wire() for event in self.event_log.recent(limit)],
            event_count=len(self.event_log),
            selected_id=selected.message_id if selected else None,
            profile=self.correlator.panel if self.correlator else ProfilePanel(),
            normalization_gaps=self.normalizer.gap_count,
        )

    async def unmount(self) -> None:
        """Unsubscribe, disconnect and drop the event log. Safe to call twice."""
        if self._unmounted:
            return
        self._unmounted = True
        log.info("session.unmounting", session_id=self.session_id, events=len(self.event_log))

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.supervisor.teardown()
        if self.correlator is not None:
            await self.correlator.close()
        if self._lookup is not None:
            await self._lookup.aclose()
        self.event_log.clear()
        self._notify({"type": "closed"})
        self._listeners.clear()

    async def _connect_with_fresh_token(self) -> None:
        try:
            token = await self.context.bearer_token()
        except (CredentialsMissing, CredentialStoreUnavailable, AuthFailure) as e:
            self._banner = str(e)
            log.warning("session.token_unavailable", session_id=self.session_id, error=str(e), error_type=type(e).__name__)
            self._notify_status()
            return
        if self._unmounted:
            return
        self._banner = None
        await self.supervisor.connect(token)

    async def _reauthenticate(self) -> None:
        log.info("session.reauthenticating", session_id=self.session_id, attempt=self._reauth_attempts)
        await self._connect_with_fresh_token()

    def _on_batch(self, payload: Any) -> None:
        appended = []
        for event in self.normalizer.normalize_batch(payload):
            if not self.event_log.append(event):
                continue
            appended.append(event)
            if self.metrics:
                self.metrics.record_event_received(event.type)
        if appended:
            # Listed newest-first, like the log itself
            self._notify({"type": "events", "events": [event.to_wire() for event in reversed(appended)]})
            self.event_log.select_first_if_unset(appended[0])

    def _on_gap(self, gap: NormalizationGap) -> None:
        if self.metrics:
            self.metrics.record_normalization_gap()

    def _on_status(self, status: ConnectionStatus) -> None:
        previous = self._status
        self._status = status

        if self.metrics and status.attempts > previous.attempts:
            self.metrics.record_reconnect_attempt()
        if status.state == SupervisorState.SUBSCRIBED:
            self._reauth_attempts = 0

        if status.failure == "auth_rejected" and previous.failure != "auth_rejected":
            if self.metrics:
                self.metrics.record_auth_rejection()
            self.context.invalidate_token()
            if not self._unmounted and self._reauth_attempts < self._max_reauth:
                self._reauth_attempts += 1
                self._spawn(self._reauthenticate())

        self._notify_status()

    def _on_selection(self, event) -> None:
        self._notify({"type": "selection", "messageId": event.message_id if event else None})

    def _on_profile(self, panel: ProfilePanel) -> None:
        if self.metrics:
            if panel.record is not None:
                self.metrics.record_profile_lookup("success")
            elif panel.error is not None:
                self.metrics.record_profile_lookup("error")
        self._notify({"type": "profile", "profile": panel.model_dump(mode="json")})

    def _notify_status(self) -> None:
        self._notify({
            "type": "status",
            "status": self._status.model_dump(mode="json"),
            "error": self.error,
        })

    def _notify(self, message: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                log.warning("session.listener_failed", session_id=self.session_id, error=str(e))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
