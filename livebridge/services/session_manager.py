"""Registry of mounted live sessions."""
import asyncio
import uuid
from typing import Callable, Optional

import httpx
import structlog

from ..config import Settings, get_settings
from ..credentials.base import CredentialStore
from ..credentials.models import TenantLookupConfig
from ..errors import SessionNotFound
from ..metrics import Metrics
from ..streaming.policy import ReconnectPolicy
from ..streaming.supervisor import SupervisorState
from ..streaming.transport import StreamTransport
from .profile_correlator import ProfileLookupClient
from .session import LiveSession, SessionContext, UpdateListener
from .token_exchanger import TokenExchanger

log = structlog.get_logger()


class SessionManager:
    """
    Creates, finds and closes live sessions.

    Every session gets its own ``SessionContext`` (and so its own token) and
    its own transport; the HTTP clients are shared.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        exchanger: TokenExchanger,
        transport_factory: Callable[[], StreamTransport],
        settings: Optional[Settings] = None,
        policy: Optional[ReconnectPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[Metrics] = None,
        publisher: Optional[Callable[[str], UpdateListener]] = None,
    ):
        """
        Initialize session manager

        Args:
            credentials: Store holding tenant identities and lookup settings
            exchanger: Shared token exchanger
            transport_factory: Builds a fresh transport per session
            settings: Application settings (defaults to get_settings())
            policy: Reconnection policy (defaults to one built from settings)
            http_client: Shared client for profile lookups
            metrics: Metrics collector
            publisher: Returns the update listener for a session id (UI fan-out)
        """
        self.settings = settings or get_settings()
        self.credentials = credentials
        self.exchanger = exchanger
        self.metrics = metrics
        self._transport_factory = transport_factory
        self._policy = policy or ReconnectPolicy(
            max_attempts=self.settings.RECONNECT_MAX_ATTEMPTS,
            delay=self.settings.RECONNECT_DELAY_SECONDS,
            subscribe_grace=self.settings.SUBSCRIBE_GRACE_SECONDS,
        )
        self._http_client = http_client
        self._publisher = publisher
        self._sessions: dict[str, LiveSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _lookup_client(self, config: TenantLookupConfig) -> ProfileLookupClient:
        return ProfileLookupClient(
            config,
            http_client=self._http_client,
            campaign_prefix=self.settings.PROFILE_CAMPAIGN_PREFIX,
            timeout=self.settings.HTTP_TIMEOUT_SECONDS,
        )

    async def create(self, tenant_id: str, source_id: str, settle: bool = True) -> LiveSession:
        """
        Mount a new session.

        Auth and connection problems do not raise; they show up in the
        session's error. With ``settle`` the call waits (bounded by
        CONNECT_SETTLE_SECONDS) until the connection is subscribed or has
        given up.
        """
        session_id = uuid.uuid4().hex
        context = SessionContext(tenant_id, self.credentials, self.exchanger, metrics=self.metrics)
        session = LiveSession(
            session_id,
            context,
            source_id,
            transport=self._transport_factory(),
            stream_url=self.settings.STREAM_URL,
            policy=self._policy,
            lookup_factory=self._lookup_client,
            channel_type=self.settings.STREAM_CHANNEL_TYPE,
            auth_param=self.settings.STREAM_AUTH_PARAM,
            metrics=self.metrics,
        )
        if self._publisher is not None:
            session.add_listener(self._publisher(session_id))

        self._sessions[session_id] = session
        self._update_gauge()
        log.info("session.created", session_id=session_id, tenant_id=tenant_id, source_id=source_id)

        try:
            await session.mount()
        except Exception as e:
            self._sessions.pop(session_id, None)
            self._update_gauge()
            log.error("session.mount_failed", session_id=session_id, tenant_id=tenant_id, error=str(e), exc_info=True)
            await session.unmount()
            raise

        if settle and session.supervisor.state != SupervisorState.IDLE:
            try:
                await session.supervisor.wait_for_state(
                    SupervisorState.SUBSCRIBED,
                    SupervisorState.DISCONNECTED,
                    timeout=self.settings.CONNECT_SETTLE_SECONDS,
                )
            except asyncio.TimeoutError:
                log.info("session.settle_timeout", session_id=session_id, state=session.supervisor.state.value)
        return session

    def get(self, session_id: str) -> LiveSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None

    async def close(self, session_id: str) -> bool:
        """
        Unmount and forget a session.

        Returns:
            False if no such session was mounted
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.unmount()
        self._update_gauge()
        log.info("session.closed", session_id=session_id)
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            try:
                await self.close(session_id)
            except Exception as e:
                log.error("session.close_failed", session_id=session_id, error=str(e), exc_info=True)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_active_sessions(len(self._sessions))
