"""
Connection Module - Push-stream lifecycle: connect, heartbeat, reconnect with backoff

The supervisor owns the single websocket to the chat server. It decodes each
frame into a typed event and hands it to the engine, reports status changes,
and keeps reconnecting with exponential backoff until it is stopped.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets

from ..utils.performance import Throttle
from .errors import EventDecodeError
from .events import decode_event
from .models import ConnectionState, ConnectionStatus

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]
StatusCallback = Callable[[ConnectionStatus, bool], None]

# 2**32 seconds is far past any sane cap; bounds the float conversion
_MAX_EXPONENT = 32


class ConnectionSupervisor:
    """
    Keeps one push connection alive for the whole process

    State machine: disconnected -> connecting -> connected, back to
    disconnected on any failure (close, heartbeat timeout, network error),
    and terminated once stopped. Attempt ``n`` waits
    ``min(base_delay * 2**n, max_delay)`` before reconnecting; the attempt
    counter resets on every successful connect.
    """

    def __init__(self,
                 url: str,
                 token: str = "",
                 base_delay: float = 1.0,
                 max_delay: float = 30.0,
                 max_attempts: int = 10,
                 heartbeat_interval: float = 30.0,
                 heartbeat_timeout: float = 10.0,
                 typing_throttle: float = 3.0,
                 connect: Optional[Callable[..., Awaitable[Any]]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        """
        Initialize the supervisor

        Args:
            url: Websocket URL of the push stream
            token: Auth token sent in the first frame (skipped when empty)
            base_delay: Backoff base in seconds
            max_delay: Backoff cap in seconds
            max_attempts: Attempts after which the status is flagged degraded
            heartbeat_interval: Seconds between pings
            heartbeat_timeout: Seconds to wait for a pong
            typing_throttle: Minimum seconds between typing frames per channel/thread
            connect: Connection factory, ``websockets.connect`` by default
            sleep: Backoff sleep, ``asyncio.sleep`` by default
        """
        self.url = url
        self.token = token
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self._connect = connect or websockets.connect
        self._sleep = sleep or asyncio.sleep
        self._typing_throttle = Throttle(typing_throttle)
        self._seq = itertools.count(1)

        self.status = ConnectionStatus()
        self.on_event: Optional[EventCallback] = None
        self.on_status: Optional[StatusCallback] = None

        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._has_connected = False

    def attach(self, on_event: EventCallback, on_status: Optional[StatusCallback] = None) -> None:
        """Register the callbacks receiving decoded events and status changes"""
        self.on_event = on_event
        self.on_status = on_status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the connect loop on the running event loop"""
        if self.running:
            return self._task
        self._stopping = False
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Close the connection and stop reconnecting"""
        self._stopping = True
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {str(e)}")
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._set_state(ConnectionState.TERMINATED)

    def next_delay(self) -> float:
        """
        Compute the wait before the next reconnect attempt and count the attempt

        Returns:
            Delay in seconds
        """
        attempt = self.status.reconnect_attempt
        delay = min(self.base_delay * 2 ** min(attempt, _MAX_EXPONENT), self.max_delay)
        self.status.reconnect_attempt = attempt + 1
        self.status.degraded = self.status.reconnect_attempt > self.max_attempts
        return delay

    async def send_typing(self, channel_id: str, root_id: str = "") -> bool:
        """
        Tell the server the local user is typing

        Returns:
            False if disconnected or throttled
        """
        ws = self._ws
        if ws is None or not self.status.connected:
            return False
        if not self._typing_throttle.allow((channel_id, root_id or "")):
            return False
        frame = {
            "action": "user_typing",
            "seq": next(self._seq),
            "data": {"channel_id": channel_id, "root_id": root_id or ""},
        }
        try:
            await ws.send(json.dumps(frame))
        except websockets.exceptions.ConnectionClosed:
            return False
        return True

    # ─── Internals ────────────────────────────────────────────────

    def _set_state(self, state: ConnectionState, reconnected: bool = False) -> None:
        self.status.state = state
        if self.on_status is None:
            return
        try:
            self.on_status(self.status.copy(), reconnected)
        except Exception as e:
            logger.error(f"Error in connection status callback: {str(e)}", exc_info=True)

    async def _run(self) -> None:
        while not self._stopping:
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connect(self.url, ping_interval=None)
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"Connecting to {self.url} failed: {str(e)}")
            else:
                await self._session(ws)

            if self._stopping:
                break

            delay = self.next_delay()
            self._set_state(ConnectionState.DISCONNECTED)
            if self.status.degraded:
                logger.warning(f"Reconnect attempt {self.status.reconnect_attempt} in {delay:.1f}s (past ceiling of {self.max_attempts})")
            else:
                logger.info(f"Reconnect attempt {self.status.reconnect_attempt} in {delay:.1f}s")
            await self._sleep(delay)

    async def _session(self, ws) -> None:
        self._ws = ws
        heartbeat = None
        try:
            if self.token:
                await ws.send(json.dumps({"seq": next(self._seq), "action": "authenticate", "token": self.token}))

            reconnected = self._has_connected
            self._has_connected = True
            self.status.reconnect_attempt = 0
            self.status.degraded = False
            # Typing frames sent on the previous socket are gone with it
            self._typing_throttle.reset()
            logger.info(f"Push stream {'reconnected' if reconnected else 'connected'} to {self.url}")
            self._set_state(ConnectionState.CONNECTED, reconnected=reconnected)

            heartbeat = asyncio.create_task(self._heartbeat(ws))
            async for raw in ws:
                self._dispatch(raw)
            logger.info("Push stream closed by server")
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Push stream dropped: {str(e)}")
        except OSError as e:
            logger.warning(f"Push stream network error: {str(e)}")
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
            self._ws = None
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {str(e)}")

    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, self.heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No pong within {self.heartbeat_timeout}s; closing push stream")
                await ws.close()
                return
            except websockets.exceptions.ConnectionClosed:
                return

    def _dispatch(self, raw) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Skipping non-JSON frame: {str(raw)[:80]}")
            return

        # Replies to our own frames (auth, typing) carry no event tag
        if isinstance(data, dict) and "event" not in data:
            logger.debug(f"Control frame: {data}")
            return

        try:
            event = decode_event(data)
        except EventDecodeError as e:
            logger.warning(f"Skipping undecodable frame: {str(e)}")
            return

        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Error handling {type(event).__name__}: {str(e)}", exc_info=True)
