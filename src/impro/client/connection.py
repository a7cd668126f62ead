"""
IMPRO Connection Manager

Keeps one Socket.IO connection to the scoreboard server alive: connects with
a timeout guard, reconnects with exponential backoff after recoverable
disconnects, and queues operations issued while offline until the next
successful connect.

The transport (a python-socketio Client by default), timers, background tasks,
clock and random source are all injectable.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import socketio

from ..config import ConnectionConfig

logger = logging.getLogger(__name__)

# Disconnect reasons that mean we closed the connection ourselves
LOCAL_DISCONNECT_REASONS = frozenset({"io client disconnect", "client disconnect"})


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class SendResult(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    DROPPED = "dropped"


class ConnectionTimeout(Exception):
    """No successful connect within the configured timeout."""


@dataclass
class QueuedOperation:
    """An operation waiting for the next successful connect."""
    name: str
    payload: Any = None
    enqueued_at: float = 0.0
    retry_count: int = 0
    max_retries: int = 3


def backoff_delay(attempt: int, config: ConnectionConfig,
                  random_func: Callable[[], float] = random.random) -> float:
    """
    Delay before reconnect attempt number `attempt` (0-based).

    Exponential growth capped at max_reconnection_delay, then stretched by up
    to randomization_factor so clients don't reconnect in lockstep.
    """
    delay = min(
        config.initial_reconnection_delay * config.reconnection_delay_growth_factor ** attempt,
        config.max_reconnection_delay,
    )
    return delay * (1 + random_func() * config.randomization_factor)


def _start_thread(func, *args):
    thread = threading.Thread(target=func, args=args, daemon=True)
    thread.start()
    return thread


def _default_transport():
    return socketio.Client(reconnection=False)


class ConnectionManager:
    """
    Connection state machine around a Socket.IO client.

    All state is guarded by one re-entrant lock. Transport and timer callbacks
    check that they belong to the current transport before acting, so late
    events from a torn-down connection are ignored.
    """

    def __init__(self, server_url: str, config: Optional[ConnectionConfig] = None,
                 transport_factory: Optional[Callable[[], Any]] = None,
                 token_provider: Optional[Callable[[], Any]] = None,
                 timer_factory=threading.Timer,
                 start_task: Optional[Callable[..., Any]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 random_func: Callable[[], float] = random.random):
        self.server_url = server_url
        self.config = config or ConnectionConfig()
        self._transport_factory = transport_factory or _default_transport
        self._token_provider = token_provider
        self._timer_factory = timer_factory
        self._start_task = start_task or _start_thread
        self._clock = clock
        self._random = random_func

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._transport = None
        self._attached_events: set = set()
        self._connect_timer = None
        self._reconnect_timer = None
        self._reconnect_attempt = 0
        self._last_error: Optional[BaseException] = None
        self._queue: List[QueuedOperation] = []
        self._draining = False
        self._handlers: Dict[str, List[Callable]] = {}
        self._state_listeners: List[Callable[[ConnectionState], None]] = []

    # ============ Introspection ============

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def last_error(self) -> Optional[BaseException]:
        with self._lock:
            return self._last_error

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def reconnect_attempt(self) -> int:
        with self._lock:
            return self._reconnect_attempt

    def clear_queue(self) -> None:
        with self._lock:
            self._queue = []

    # ============ Public API ============

    def connect(self) -> None:
        """Open a new connection, replacing any existing one."""
        with self._lock:
            self._cancel_reconnect_timer()
            self._set_state(ConnectionState.CONNECTING)
            self._open()

    def disconnect(self) -> None:
        """Close the connection. No automatic reconnection follows."""
        with self._lock:
            self._cancel_reconnect_timer()
            self._cancel_connect_timer()
            self._teardown_transport()
            self._set_state(ConnectionState.DISCONNECTED)

    def send(self, name: str, payload: Any = None, queue_if_disconnected: bool = True,
             max_retries: int = 3) -> SendResult:
        """
        Emit an operation to the server.

        Args:
            name: Event name
            payload: JSON-serializable payload
            queue_if_disconnected: Queue the operation if it cannot be sent now
            max_retries: Retries allowed when draining the queue

        Returns:
            SendResult.SENT, QUEUED or DROPPED
        """
        with self._lock:
            # Sends issued from inside a drain go out after the backlog
            if self._draining:
                return self._enqueue(name, payload, max_retries)

            if self._state == ConnectionState.CONNECTED and self._transport is not None:
                try:
                    self._emit(self._transport, name, payload)
                    return SendResult.SENT
                except Exception as e:
                    logger.error(f"Error sending {name}: {e}")

            if not queue_if_disconnected:
                return SendResult.DROPPED
            return self._enqueue(name, payload, max_retries)

    def _enqueue(self, name: str, payload: Any, max_retries: int) -> SendResult:
        self._queue.append(QueuedOperation(
            name=name,
            payload=payload,
            enqueued_at=self._clock(),
            max_retries=max_retries,
        ))
        logger.info(f"Operation queued: {name}. Queue length: {len(self._queue)}")
        return SendResult.QUEUED

    def subscribe(self, event: str, handler: Callable) -> None:
        """Call handler for every `event` from the server, across reconnects."""
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
            if self._transport is not None:
                self._attach(self._transport, event)

    def unsubscribe(self, event: str, handler: Optional[Callable] = None) -> None:
        """Remove one handler, or every handler of the event if none is given."""
        with self._lock:
            if handler is None:
                self._handlers.pop(event, None)
                return
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def on_connection_state_change(self, handler: Callable[[ConnectionState], None]) -> None:
        """Register a state listener; it is called at once with the current state."""
        with self._lock:
            self._state_listeners.append(handler)
            handler(self._state)

    def off_connection_state_change(self, handler: Callable[[ConnectionState], None]) -> None:
        with self._lock:
            if handler in self._state_listeners:
                self._state_listeners.remove(handler)

    # ============ Transport lifecycle ============

    def _open(self) -> None:
        """Create a transport and start connecting it. Caller holds the lock."""
        self._teardown_transport()
        self._cancel_connect_timer()

        transport = self._transport_factory()
        self._transport = transport
        self._attached_events = set()
        transport.on("connect", lambda: self._on_connect(transport))
        transport.on("disconnect", lambda reason=None: self._on_disconnect(transport, reason))
        for event in self._handlers:
            self._attach(transport, event)

        self._connect_timer = self._timer_factory(
            self.config.timeout, self._on_connect_timeout, args=(transport,)
        )
        self._connect_timer.daemon = True
        self._connect_timer.start()

        self._start_task(self._run_connect, transport)

    def _run_connect(self, transport) -> None:
        """Blocking connect, run as a background task."""
        try:
            auth = self._token_provider() if self._token_provider else None
            transport.connect(
                self.server_url,
                transports=["websocket"],
                wait_timeout=self.config.timeout,
                auth=auth,
            )
        except Exception as e:
            with self._lock:
                if transport is self._transport and self._state == ConnectionState.CONNECTING:
                    logger.error(f"Connection error: {e}")
                    self._handle_connection_error(e)

    def _teardown_transport(self) -> None:
        transport = self._transport
        self._transport = None
        self._attached_events = set()
        if transport is not None:
            self._start_task(self._close_transport, transport)

    @staticmethod
    def _close_transport(transport) -> None:
        try:
            transport.disconnect()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

    def _attach(self, transport, event: str) -> None:
        """Attach one dispatcher per event; it fans out to current handlers."""
        if event in self._attached_events:
            return
        self._attached_events.add(event)

        def dispatch(*args):
            with self._lock:
                if transport is not self._transport:
                    return
                for handler in list(self._handlers.get(event, ())):
                    try:
                        handler(*args)
                    except Exception:
                        logger.exception(f"Handler for '{event}' failed")

        transport.on(event, dispatch)

    @staticmethod
    def _emit(transport, name: str, payload: Any) -> None:
        if payload is None:
            transport.emit(name)
        else:
            transport.emit(name, payload)

    # ============ Transport callbacks ============

    def _on_connect(self, transport) -> None:
        with self._lock:
            if transport is not self._transport:
                # Connect finished after we gave up on this transport
                self._start_task(self._close_transport, transport)
                return
            self._cancel_connect_timer()
            logger.info(f"Connected to {self.server_url}")
            self._reconnect_attempt = 0
            self._draining = True
            try:
                self._set_state(ConnectionState.CONNECTED)
                self._process_queue()
            finally:
                self._draining = False

    def _on_disconnect(self, transport, reason=None) -> None:
        with self._lock:
            if transport is not self._transport:
                return
            logger.info(f"Disconnected from {self.server_url}: {reason}")
            if reason in LOCAL_DISCONNECT_REASONS:
                self._set_state(ConnectionState.DISCONNECTED)
            else:
                self._set_state(ConnectionState.RECONNECTING)
                self._attempt_reconnect()

    def _on_connect_timeout(self, transport) -> None:
        with self._lock:
            if transport is not self._transport or self._state != ConnectionState.CONNECTING:
                return
            logger.error(f"Connection timeout after {self.config.timeout}s")
            self._handle_connection_error(
                ConnectionTimeout(f"No connection within {self.config.timeout}s")
            )

    def _handle_connection_error(self, error: BaseException) -> None:
        self._cancel_connect_timer()
        self._teardown_transport()
        self._last_error = error
        self._set_state(ConnectionState.ERROR)
        self._attempt_reconnect()

    # ============ Reconnection ============

    def _attempt_reconnect(self) -> None:
        """Schedule the next reconnect, or give up once attempts run out."""
        ceiling = self.config.reconnection_attempts
        if self._reconnect_attempt >= ceiling:
            logger.error(f"Maximum reconnection attempts ({ceiling}) reached")
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._cancel_reconnect_timer()
        delay = backoff_delay(self._reconnect_attempt, self.config, self._random)
        self._reconnect_attempt += 1
        logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._reconnect_attempt}/{ceiling})")
        self._set_state(ConnectionState.RECONNECTING)

        self._reconnect_timer = self._timer_factory(delay, self._on_reconnect_timer)
        self._reconnect_timer.daemon = True
        self._reconnect_timer.start()

    def _on_reconnect_timer(self) -> None:
        with self._lock:
            if self._state != ConnectionState.RECONNECTING:
                return
            self._reconnect_timer = None
            self._set_state(ConnectionState.CONNECTING)
            self._open()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _cancel_connect_timer(self) -> None:
        if self._connect_timer is not None:
            self._connect_timer.cancel()
            self._connect_timer = None

    # ============ Queue ============

    def _process_queue(self) -> None:
        """
        Send everything queued while offline, in issue order.

        Operations sent while the batch is going out are queued behind it and
        sent in a follow-up pass. Failed operations wait for the next connect.
        """
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            return

        retry: List[QueuedOperation] = []
        batch, self._queue = self._queue, []
        while batch:
            now = self._clock()
            for operation in batch:
                if now - operation.enqueued_at > self.config.queue_ttl:
                    logger.warning(f"Skipping queued operation {operation.name} as it's too old")
                    continue
                try:
                    self._emit(self._transport, operation.name, operation.payload)
                except Exception as e:
                    logger.error(f"Error processing queued operation {operation.name}: {e}")
                    operation.retry_count += 1
                    if operation.retry_count > operation.max_retries:
                        logger.error(f"Maximum retries reached for operation {operation.name}")
                    else:
                        retry.append(operation)
            batch, self._queue = self._queue, []
        self._queue = retry

        if self._queue:
            logger.info(f"{len(self._queue)} operations still in queue after processing")

    # ============ State ============

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")
