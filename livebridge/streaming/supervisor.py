"""Connection supervisor: lifecycle of one streaming connection per live session."""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, NamedTuple, Optional

import structlog
from pydantic import BaseModel

from ..errors import AuthRejected, BridgeError, StreamConnectionError
from ..services.token_models import BearerToken
from .policy import FailureKind, ReconnectPolicy
from .transport import SignalKind, StreamTransport, Subscription, TransportSignal

log = structlog.get_logger()

LIVE_EVENTS = "live_events"


class SupervisorState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class Action(str, Enum):
    MARK_CONNECTED = "mark_connected"
    MARK_DISCONNECTED = "mark_disconnected"
    SCHEDULE_SUBSCRIBE = "schedule_subscribe"
    SCHEDULE_RECONNECT = "schedule_reconnect"
    DELIVER_BATCH = "deliver_batch"
    SET_ERROR = "set_error"
    SURFACE_AUTH_REJECTED = "surface_auth_rejected"
    SURFACE_TERMINAL_ERROR = "surface_terminal_error"


class Transition(NamedTuple):
    state: SupervisorState
    actions: tuple[Action, ...] = ()


_OPEN_STATES = (SupervisorState.CONNECTING, SupervisorState.RECONNECTING)


def transition(
    state: SupervisorState,
    signal: TransportSignal,
    attempts: int,
    policy: ReconnectPolicy,
) -> Transition:
    """
    Compute the supervisor's reaction to one transport signal.

    Args:
        state: Current state
        signal: Signal read from the transport
        attempts: Reconnect attempts made since the last successful connect
        policy: Reconnection and classification policy

    Returns:
        The next state and the actions to perform, in order
    """
    if state in (SupervisorState.IDLE, SupervisorState.DISCONNECTED):
        return Transition(state)

    kind = signal.kind
    if kind == SignalKind.CONNECTED:
        if state in _OPEN_STATES:
            return Transition(
                SupervisorState.AUTHENTICATING,
                (Action.MARK_CONNECTED, Action.SCHEDULE_SUBSCRIBE),
            )
        return Transition(state)

    if kind == SignalKind.SUBSCRIBED:
        if state == SupervisorState.AUTHENTICATING:
            return Transition(SupervisorState.SUBSCRIBED)
        return Transition(state)

    if kind == SignalKind.DATA:
        if signal.event == LIVE_EVENTS:
            return Transition(state, (Action.DELIVER_BATCH,))
        return Transition(state)

    if kind == SignalKind.ERROR:
        return Transition(state, (Action.SET_ERROR,))

    # DISCONNECTED or CONNECT_ERROR
    failure = policy.classify(signal)
    if failure == FailureKind.CLIENT:
        return Transition(SupervisorState.DISCONNECTED, (Action.MARK_DISCONNECTED,))
    if failure == FailureKind.AUTH:
        return Transition(
            SupervisorState.DISCONNECTED,
            (Action.MARK_DISCONNECTED, Action.SURFACE_AUTH_REJECTED),
        )
    if policy.should_retry(attempts):
        return Transition(
            SupervisorState.RECONNECTING,
            (Action.MARK_DISCONNECTED, Action.SCHEDULE_RECONNECT),
        )
    return Transition(
        SupervisorState.DISCONNECTED,
        (Action.MARK_DISCONNECTED, Action.SURFACE_TERMINAL_ERROR),
    )


class ConnectionStatus(BaseModel):
    """Connectivity as shown to the UI."""
    state: SupervisorState
    connected: bool = False
    error: Optional[str] = None
    failure: Optional[Literal["auth_rejected", "connection_error"]] = None
    attempts: int = 0


class ConnectionSupervisor:
    """
    Owns one streaming connection: connect, subscribe, supervise, tear down.

    Transport callbacks are not handled directly; the transport pushes typed
    signals onto a queue which a single pump task feeds through ``transition``.
    """

    def __init__(
        self,
        transport: StreamTransport,
        url: str,
        subscription: Subscription,
        policy: Optional[ReconnectPolicy] = None,
        on_batch: Optional[Callable[[Any], None]] = None,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        auth_param: str = "auth",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize supervisor

        Args:
            transport: Streaming transport to drive
            url: Streaming endpoint URL
            subscription: Channel to subscribe to once connected
            policy: Reconnection policy (defaults to ReconnectPolicy())
            on_batch: Called with each ``live_events`` payload, in delivery order
            on_status: Called whenever the connection status changes
            auth_param: Query parameter that carries the bearer token
            sleep: Awaitable sleep, replaceable for deterministic tests
        """
        self._transport = transport
        self._url = url
        self._subscription = subscription
        self._policy = policy or ReconnectPolicy()
        self._on_batch = on_batch
        self._on_status = on_status
        self._auth_param = auth_param
        self._sleep = sleep

        self._state = SupervisorState.IDLE
        self._changed = asyncio.Event()
        self._token: Optional[BearerToken] = None
        self._attempts = 0
        self._connected = False
        self._error: Optional[str] = None
        self._failure: Optional[str] = None
        self.last_failure: Optional[BridgeError] = None

        self._pump: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._torn_down = False

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def subscription(self) -> Subscription:
        return self._subscription

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            connected=self._connected,
            error=self._error,
            failure=self._failure,
            attempts=self._attempts,
        )

    async def connect(self, token: BearerToken) -> None:
        """
        Open the connection with a bearer token.

        Allowed from IDLE, or from DISCONNECTED when the previous connection
        ended (for instance after an auth rejection and a fresh exchange).

        Raises:
            RuntimeError: If the supervisor was torn down or is already live
        """
        if self._torn_down:
            raise RuntimeError("supervisor has been torn down")
        if self._state not in (SupervisorState.IDLE, SupervisorState.DISCONNECTED):
            raise RuntimeError(f"cannot connect while {self._state.value}")

        self._token = token
        self._attempts = 0
        self._error = None
        self._failure = None
        self.last_failure = None

        if not token.is_valid():
            self._reject_auth("Bearer token expired before connecting")
            return

        self._ensure_pump()
        self._set_state(SupervisorState.CONNECTING)
        self._publish()
        await self._open()

    async def teardown(self) -> None:
        """
        Unsubscribe, then disconnect. Calling it again is a no-op.
        """
        if self._torn_down:
            return
        self._torn_down = True
        log.info("stream.teardown", channel_id=self._subscription.channel_id, state=self._state.value)

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        for task in pending:
            task.cancel()

        if self._transport.connected:
            try:
                await self._transport.emit("unsubscribe", self._subscription.payload())
                log.info("stream.unsubscribed", channel_id=self._subscription.channel_id)
            except Exception as e:
                log.warning("stream.unsubscribe_failed", error=str(e))
        await self._transport.disconnect()

        if self._pump is not None and self._pump is not current:
            self._pump.cancel()
            pending.append(self._pump)
        await asyncio.gather(*pending, return_exceptions=True)

        self._connected = False
        self._set_state(SupervisorState.DISCONNECTED)
        self._publish()

    async def wait_for_state(self, *states: SupervisorState, timeout: Optional[float] = None) -> SupervisorState:
        """
        Wait until the supervisor reaches one of ``states``.

        Raises:
            asyncio.TimeoutError: If the timeout elapses first
        """
        async def _wait() -> SupervisorState:
            while self._state not in states:
                self._changed.clear()
                await self._changed.wait()
            return self._state

        return await asyncio.wait_for(_wait(), timeout)

    async def _open(self) -> None:
        log.info(
            "stream.connecting",
            url=self._url,
            channel_id=self._subscription.channel_id,
            token=self._token.preview,
            attempt=self._attempts,
        )
        await self._transport.connect(self._url, {self._auth_param: self._token.value})

    def _ensure_pump(self) -> None:
        if self._pump is None or self._pump.done():
            self._pump = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            signal = await self._transport.signals.get()
            self._observe(signal)
            step = transition(self._state, signal, self._attempts, self._policy)
            dirty = step.state != self._state
            if dirty:
                self._set_state(step.state)
            for action in step.actions:
                dirty = self._apply(action, signal) or dirty
            if dirty:
                self._publish()

    def _observe(self, signal: TransportSignal) -> None:
        # Catch-all visibility over every inbound signal
        log.debug(
            "stream.signal",
            kind=signal.kind.value,
            event_name=signal.event,
            reason=signal.reason,
            state=self._state.value,
        )

    def _apply(self, action: Action, signal: TransportSignal) -> bool:
        """Perform one action; return True if the visible status changed."""
        if action == Action.MARK_CONNECTED:
            self._connected = True
            self._attempts = 0
            self._error = None
            self._failure = None
            log.info("stream.connected", channel_id=self._subscription.channel_id)
            return True

        if action == Action.SCHEDULE_SUBSCRIBE:
            self._spawn(self._subscribe_later())
            return False

        if action == Action.MARK_DISCONNECTED:
            self._connected = False
            if signal.kind == SignalKind.CONNECT_ERROR:
                self._error = signal.reason
            log.info("stream.disconnected", reason=signal.reason, kind=signal.kind.value)
            return True

        if action == Action.SCHEDULE_RECONNECT:
            if self._reconnect_task is None or self._reconnect_task.done():
                self._reconnect_task = self._spawn(self._reconnect_later())
            return False

        if action == Action.DELIVER_BATCH:
            if self._on_batch is not None:
                try:
                    self._on_batch(signal.payload)
                except Exception as e:
                    log.error("stream.batch_handler_failed", error=str(e), exc_info=True)
            return False

        if action == Action.SET_ERROR:
            self._error = signal.reason
            log.warning("stream.error", error=signal.reason)
            return True

        if action == Action.SURFACE_AUTH_REJECTED:
            if signal.kind == SignalKind.DISCONNECTED:
                message = "Server disconnected - authentication may have failed"
            else:
                message = signal.reason or "Authentication rejected"
            self._mark_auth_rejected(message)
            return True

        if action == Action.SURFACE_TERMINAL_ERROR:
            message = signal.reason or "Connection lost"
            self.last_failure = StreamConnectionError(message, attempts=self._attempts)
            self._error = message
            self._failure = "connection_error"
            log.error("stream.connection_failed", error=message, attempts=self._attempts)
            return True

        return False

    async def _subscribe_later(self) -> None:
        # Give the server time to finish its post-handshake setup
        await self._sleep(self._policy.subscribe_grace)
        if self._torn_down or self._state != SupervisorState.AUTHENTICATING:
            return
        try:
            await self._transport.emit("subscribe", self._subscription.payload())
        except Exception as e:
            log.warning("stream.subscribe_failed", error=str(e))
            self._transport.push(TransportSignal.error(f"Subscribe failed: {e}"))
            return
        log.info(
            "stream.subscribe_sent",
            channel_id=self._subscription.channel_id,
            channel_type=self._subscription.channel_type,
        )
        self._transport.push(TransportSignal(kind=SignalKind.SUBSCRIBED))

    async def _reconnect_later(self) -> None:
        await self._sleep(self._policy.delay)
        if self._torn_down or self._state != SupervisorState.RECONNECTING:
            return
        # A failure of this attempt must be able to schedule the next one
        self._reconnect_task = None
        self._attempts += 1
        if not self._token.is_valid():
            self._reject_auth("Bearer token expired during reconnection")
            return
        log.info("stream.reconnect_attempt", attempt=self._attempts, max_attempts=self._policy.max_attempts)
        self._publish()
        await self._open()

    def _reject_auth(self, message: str) -> None:
        self._connected = False
        self._mark_auth_rejected(message)
        self._set_state(SupervisorState.DISCONNECTED)
        self._publish()

    def _mark_auth_rejected(self, message: str) -> None:
        self.last_failure = AuthRejected(message)
        self._error = message
        self._failure = "auth_rejected"
        log.warning("stream.auth_rejected", error=message, channel_id=self._subscription.channel_id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _set_state(self, state: SupervisorState) -> None:
        if state == self._state:
            return
        log.info("stream.state_changed", previous=self._state.value, state=state.value)
        self._state = state
        self._changed.set()

    def _publish(self) -> None:
        if self._on_status is not None:
            self._on_status(self.status)
