"""OpenSea stream connection manager.

``StreamClient.run()`` is the single task that owns the socket and the
channel registry. ``subscribe``, ``unsubscribe`` and ``shutdown`` never touch
either directly; they enqueue commands that the run loop applies in order.

State machine::

    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> CONNECTED
                        ^   |            |              |
                        |   +------------+--------------+--> RECONNECTING
                        +--------------------------------------/
    any state -> CLOSED (terminal)
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import InvalidStatus, WebSocketException

from .backoff import Backoff
from .codec import (
    ChannelClosed,
    ControlFrame,
    ControlReply,
    EventFrame,
    decode_frame,
    encode_frame,
    heartbeat_frame,
    subscribe_frame,
    unsubscribe_frame,
)
from .config import Settings, get_settings
from .errors import (
    AuthError,
    ClientClosedError,
    EventDecodeError,
    FrameDecodeError,
    TransportError,
    UnreachableError,
)
from .models import UnrecognizedEvent
from .observability import ClientStats
from .protocol import HEARTBEAT_TOPIC, Network
from .registry import ChannelRegistry, Handler, SubscriptionId

LOGGER = logging.getLogger(__name__)

ConnectFactory = Callable[..., Awaitable[Any]]

AUTH_REJECTED_STATUSES = (401, 403)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.AUTHENTICATING, ConnectionState.RECONNECTING}),
    ConnectionState.AUTHENTICATING: frozenset({ConnectionState.CONNECTED, ConnectionState.RECONNECTING}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.RECONNECTING}),
    ConnectionState.RECONNECTING: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class _Subscribe:
    subscription_id: SubscriptionId
    handler: Handler


@dataclass(frozen=True)
class _Unsubscribe:
    subscription_id: SubscriptionId


_SHUTDOWN = object()

_Command = Union[_Subscribe, _Unsubscribe, object]


class StreamClient:
    """Long-lived client for the OpenSea Stream API.

    Handlers run inside the ``run()`` task, one event at a time, in the order
    frames arrive. A handler may be a plain function or a coroutine function.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        network: Union[Network, str, None] = None,
        *,
        settings: Optional[Settings] = None,
        connect_factory: Optional[ConnectFactory] = None,
        **options: Any,
    ) -> None:
        base = settings or get_settings()
        if options:
            unknown = sorted(set(options) - set(Settings.model_fields))
            if unknown:
                raise TypeError(f"unknown client options: {', '.join(unknown)}")
            base = base.model_copy(update=options)
        self.settings = base

        self._api_key = api_key or base.api_key
        if not self._api_key:
            raise ValueError("an OpenSea API key is required")
        self.network = Network.parse(network or base.network)
        self._url = f"{self.network.url}?{urlencode({'token': self._api_key})}"
        self._connect_factory = connect_factory or ws_connect

        self.stats = ClientStats(metrics=base.metrics_enabled)
        self.registry = ChannelRegistry(self.stats)
        self._backoff = Backoff(
            initial=base.backoff_initial_sec,
            maximum=base.backoff_max_sec,
            multiplier=base.backoff_multiplier,
            stability_threshold=base.stability_threshold_sec,
            max_attempts=base.max_reconnect_attempts,
        )

        self._state = ConnectionState.DISCONNECTED
        self._commands: asyncio.Queue[_Command] = asyncio.Queue()
        self._closing = asyncio.Event()
        self._done = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._run_task: Optional[asyncio.Task[Any]] = None
        self._refs = itertools.count(1)
        self._pending_joins: dict[str, str] = {}
        self._heartbeat_ref: Optional[str] = None
        self._pending_command: Optional[_Command] = None

    # ------------------------------------------------------------------ API

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    def subscribe(self, topic: str, handler: Handler) -> SubscriptionId:
        """Register ``handler`` for ``topic``, replacing any previous handler.

        Returns immediately; the run loop applies the registration and sends
        the join frame once connected.
        """

        self._ensure_open()
        if not callable(handler):
            raise TypeError("handler must be callable")
        subscription_id = SubscriptionId.new(topic)
        self._submit(_Subscribe(subscription_id, handler))
        return subscription_id

    def unsubscribe(self, subscription_id: SubscriptionId) -> None:
        self._ensure_open()
        self._submit(_Unsubscribe(subscription_id))

    async def run(self) -> None:
        """Drive the connection until shutdown.

        Returns once after ``shutdown()``. Raises ``AuthError`` when the API
        key is rejected and ``UnreachableError`` when a configured reconnect
        limit runs out. Transport failures, bad frames and handler errors are
        handled internally.
        """

        if self._state is ConnectionState.CLOSED:
            raise ClientClosedError()
        if self._run_task is not None:
            raise RuntimeError("run() is already active for this client")
        self._loop = asyncio.get_running_loop()
        self._run_task = asyncio.current_task()
        try:
            await self._run_state_machine()
        except AuthError as exc:
            LOGGER.error("OpenSea stream (%s) rejected the API key: %s", self.network.value, exc.reason)
            raise
        except UnreachableError as exc:
            LOGGER.error("Giving up on OpenSea stream (%s): %s", self.network.value, exc)
            raise
        finally:
            self._close_state()
            self._done.set()

    async def shutdown(self) -> None:
        """Close the socket, stop the run loop and move to CLOSED.

        Waits for ``run()`` to return unless called from inside a handler.
        """

        if self._state is ConnectionState.CLOSED:
            return
        self.request_shutdown()
        task = self._run_task
        if task is None:
            self._close_state()
            return
        if task is asyncio.current_task() or task.done():
            return
        await self._done.wait()

    def request_shutdown(self) -> None:
        """Thread-safe, non-blocking shutdown request."""

        loop = self._loop
        if loop is not None and loop.is_running() and not self._in_loop(loop):
            loop.call_soon_threadsafe(self._signal_close)
        else:
            self._signal_close()

    async def __aenter__(self) -> "StreamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # --------------------------------------------------------- state machine

    async def _run_state_machine(self) -> None:
        last_error: Optional[BaseException] = None
        while not self._closing.is_set():
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._open()
            except TransportError as exc:
                last_error = exc
                LOGGER.warning("Connecting to OpenSea stream (%s) failed: %s", self.network.value, exc)
                if not await self._wait_before_reconnect(last_error):
                    return
                continue
            if ws is None:
                return

            connected_at: Optional[float] = None
            try:
                self._set_state(ConnectionState.AUTHENTICATING)
                if not await self._authenticate(ws):
                    return
                self._set_state(ConnectionState.CONNECTED)
                connected_at = time.monotonic()
                LOGGER.info("Connected to OpenSea stream (%s)", self.network.value)
                await self._serve(ws)
                return
            except TransportError as exc:
                last_error = exc
                LOGGER.warning("OpenSea stream connection lost: %s", exc)
            finally:
                await self._close_socket(ws)
                if connected_at is not None and self._backoff.record_connected_period(
                    time.monotonic() - connected_at
                ):
                    LOGGER.debug("Connection was stable; backoff reset")

            if self._closing.is_set():
                return
            if not await self._wait_before_reconnect(last_error):
                return

    async def _wait_before_reconnect(self, error: Optional[BaseException]) -> bool:
        """Back off before the next attempt; False when shutdown arrived meanwhile."""

        self._set_state(ConnectionState.RECONNECTING)
        self.stats.record_reconnect(error)
        if self._backoff.exhausted():
            raise UnreachableError(self._backoff.attempts, error)
        delay = self._backoff.next_delay()
        LOGGER.info("Reconnecting in %.2fs (attempt %d)", delay, self._backoff.attempts)
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def _open(self) -> Any:
        try:
            return await self._until_closing(
                self._connect_factory(
                    self._url,
                    open_timeout=self.settings.open_timeout_sec,
                    ping_interval=self.settings.ping_interval_sec,
                    ping_timeout=self.settings.ping_timeout_sec,
                    max_size=self.settings.max_frame_bytes,
                )
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in AUTH_REJECTED_STATUSES:
                raise AuthError(f"handshake rejected with HTTP {status}", status_code=status) from exc
            raise TransportError(f"handshake rejected with HTTP {status}") from exc
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

    async def _authenticate(self, ws: Any) -> bool:
        # The token travels in the URL; the first heartbeat reply confirms the socket was accepted.
        ref = self._next_ref()
        await self._send(ws, heartbeat_frame(ref))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.auth_timeout_sec
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportError("timed out waiting for the authentication reply")
            try:
                raw = await self._until_closing(asyncio.wait_for(ws.recv(), timeout=remaining))
            except asyncio.TimeoutError:
                raise TransportError("timed out waiting for the authentication reply") from None
            except (OSError, WebSocketException) as exc:
                raise TransportError(f"connection closed while authenticating: {exc}") from exc
            if raw is None:
                return False
            self.stats.record_frame()
            try:
                frame = decode_frame(raw)
            except FrameDecodeError as exc:
                self._drop("malformed", exc)
                continue
            except EventDecodeError as exc:
                self._drop("invalid_event", exc)
                continue
            if isinstance(frame, ControlReply) and frame.ref == ref:
                if frame.ok:
                    return True
                raise AuthError(frame.reason or frame.status or "rejected")
            if isinstance(frame, ChannelClosed) and frame.topic == HEARTBEAT_TOPIC:
                raise AuthError(frame.reason)
            LOGGER.debug("Ignoring %s received before authentication", type(frame).__name__)

    async def _serve(self, ws: Any) -> None:
        self.registry.reset_confirmations()
        self._pending_joins.clear()
        self._heartbeat_ref = None
        if self._drain_commands():
            return
        await self._replay(ws)

        loop = asyncio.get_running_loop()
        interval = self.settings.heartbeat_interval_sec
        next_heartbeat = loop.time() + interval
        recv_task: Optional[asyncio.Future[Any]] = None
        command_task: Optional[asyncio.Future[Any]] = None
        try:
            while True:
                if recv_task is None:
                    recv_task = asyncio.ensure_future(ws.recv())
                if command_task is None:
                    command_task = asyncio.ensure_future(self._commands.get())
                timeout = max(0.0, next_heartbeat - loop.time())
                done, _ = await asyncio.wait(
                    {recv_task, command_task},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if command_task in done:
                    command, command_task = command_task.result(), None
                    if command is _SHUTDOWN:
                        return
                    await self._apply(ws, command)
                if recv_task in done:
                    finished, recv_task = recv_task, None
                    try:
                        raw = finished.result()
                    except (OSError, WebSocketException) as exc:
                        raise TransportError(f"connection closed: {exc}") from exc
                    await self._handle_frame(raw)
                if loop.time() >= next_heartbeat:
                    if self._heartbeat_ref is not None:
                        raise TransportError("heartbeat reply not received in time")
                    await self._send_heartbeat(ws)
                    next_heartbeat = loop.time() + interval
        finally:
            if command_task is not None and command_task.done() and not command_task.cancelled():
                # Already taken off the queue; applied first on the next connection.
                self._pending_command = command_task.result()
            for task in (recv_task, command_task):
                if task is not None and not task.done():
                    task.cancel()

    # -------------------------------------------------------------- frames

    async def _handle_frame(self, raw: Any) -> None:
        self.stats.record_frame()
        try:
            frame = decode_frame(raw)
        except FrameDecodeError as exc:
            self._drop("malformed", exc)
            return
        except EventDecodeError as exc:
            self._drop("invalid_event", exc)
            return

        if isinstance(frame, EventFrame):
            if isinstance(frame.event, UnrecognizedEvent):
                self.stats.events_unrecognized += 1
                LOGGER.debug("Unrecognized event type %s on %s", frame.event.event_type, frame.topic)
            await self.registry.dispatch(frame.topic, frame.event)
        elif isinstance(frame, ControlReply):
            self._handle_reply(frame)
        elif isinstance(frame, ChannelClosed):
            self.registry.unconfirm(frame.topic)
            LOGGER.warning("Channel %s closed by server: %s", frame.topic, frame.reason)
        else:
            LOGGER.debug("Ignoring echoed control frame %s", frame)

    def _handle_reply(self, reply: ControlReply) -> None:
        if reply.ref is not None and reply.ref == self._heartbeat_ref:
            self._heartbeat_ref = None
            return
        topic = self._pending_joins.pop(reply.ref, None) if reply.ref is not None else None
        if topic is None:
            LOGGER.debug("Reply for unknown ref %s on %s", reply.ref, reply.topic)
            return
        if reply.ok:
            self.registry.confirm(topic)
            LOGGER.info("Subscription to %s confirmed", topic)
        else:
            LOGGER.warning("Subscription to %s rejected: %s", topic, reply.reason or reply.status)

    def _drop(self, reason: str, exc: Exception) -> None:
        self.stats.record_drop(reason)
        LOGGER.warning("Dropping %s frame: %s", reason, exc)

    # ------------------------------------------------------------ commands

    def _apply_command(self, command: _Command) -> Optional[ControlFrame]:
        """Apply a command to the registry; returns the control frame it calls for."""

        if isinstance(command, _Subscribe):
            topic = command.subscription_id.topic
            is_new = topic not in self.registry
            self.registry.subscribe(topic, command.handler, command.subscription_id)
            return subscribe_frame(topic) if is_new else None
        if isinstance(command, _Unsubscribe):
            if self.registry.unsubscribe(command.subscription_id):
                return unsubscribe_frame(command.subscription_id.topic)
            return None
        raise TypeError(f"unknown command {command!r}")

    async def _apply(self, ws: Any, command: _Command) -> None:
        frame = self._apply_command(command)
        if frame is None:
            return
        if isinstance(command, _Subscribe):
            await self._join(ws, frame.topic)
        else:
            await self._leave(ws, frame.topic)

    def _drain_commands(self) -> bool:
        """Apply queued commands without sending frames; True if shutdown was queued."""

        pending, self._pending_command = self._pending_command, None
        if pending is _SHUTDOWN:
            return True
        if pending is not None:
            self._apply_command(pending)
        while True:
            try:
                command = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                return False
            if command is _SHUTDOWN:
                return True
            self._apply_command(command)

    async def _replay(self, ws: Any) -> None:
        topics = sorted(self.registry.topics())
        if topics:
            LOGGER.info("Subscribing to %d topic(s)", len(topics))
        for topic in topics:
            await self._join(ws, topic)

    async def _join(self, ws: Any, topic: str) -> None:
        ref = self._next_ref()
        self._pending_joins[ref] = topic
        await self._send(ws, subscribe_frame(topic, ref))
        self.stats.subscribes_sent += 1

    async def _leave(self, ws: Any, topic: str) -> None:
        await self._send(ws, unsubscribe_frame(topic, self._next_ref()))
        self.stats.unsubscribes_sent += 1

    async def _send_heartbeat(self, ws: Any) -> None:
        ref = self._next_ref()
        self._heartbeat_ref = ref
        await self._send(ws, heartbeat_frame(ref))
        self.stats.heartbeats_sent += 1

    # ------------------------------------------------------------- helpers

    async def _send(self, ws: Any, frame: ControlFrame) -> None:
        try:
            await ws.send(encode_frame(frame))
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"send failed: {exc}") from exc

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            LOGGER.debug("Error while closing socket: %s", exc)

    async def _until_closing(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless shutdown is requested first; None in that case."""

        task = asyncio.ensure_future(awaitable)
        closing = asyncio.ensure_future(self._closing.wait())
        try:
            done, _ = await asyncio.wait({task, closing}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            closing.cancel()
        if task not in done:
            task.cancel()
            return None
        return task.result()

    def _next_ref(self) -> str:
        return str(next(self._refs))

    def _set_state(self, new: ConnectionState) -> None:
        current = self._state
        if current is new:
            return
        if current is ConnectionState.CLOSED:
            raise RuntimeError("client is closed")
        if new is not ConnectionState.CLOSED and new not in _TRANSITIONS[current]:
            raise RuntimeError(f"invalid state transition {current.value} -> {new.value}")
        self._state = new
        self.stats.record_state(current.value, new.value)
        LOGGER.debug("State %s -> %s", current.value, new.value)

    def _close_state(self) -> None:
        self._closing.set()
        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)
        discarded = 0
        if self._pending_command not in (None, _SHUTDOWN):
            discarded += 1
        self._pending_command = None
        while True:
            try:
                command = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                break
            if command is not _SHUTDOWN:
                discarded += 1
        if discarded:
            LOGGER.debug("Discarded %d queued command(s) on close", discarded)

    def _signal_close(self) -> None:
        if self._closing.is_set():
            return
        self._closing.set()
        self._commands.put_nowait(_SHUTDOWN)

    def _submit(self, command: _Command) -> None:
        loop = self._loop
        if loop is not None and loop.is_running() and not self._in_loop(loop):
            loop.call_soon_threadsafe(self._commands.put_nowait, command)
        else:
            self._commands.put_nowait(command)

    def _ensure_open(self) -> None:
        if self._state is ConnectionState.CLOSED or self._closing.is_set():
            raise ClientClosedError()

    @staticmethod
    def _in_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False


def connect(
    api_key: Optional[str] = None,
    network: Union[Network, str, None] = None,
    **options: Any,
) -> StreamClient:
    """Build a client for ``network``; the socket is opened by ``run()``."""

    return StreamClient(api_key, network, **options)


__all__ = ["ConnectionState", "StreamClient", "connect"]
