"""
feed/feed_client.py — Feed Connection Manager

Owns the long-lived WebSocket to the agent API's client feed. Each inbound
frame is parsed into a FeedMessage and pushed onto an asyncio.Queue; the
decision pipeline consumes from the other end. The reader never waits on
the pipeline.

Lifecycle:
    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED → ...

On any loss of connection (closed socket, read error, failed dial) one
reconnect is scheduled after a fixed delay. `_reconnect_pending` stays set
until that attempt actually fires, so a burst of close events can never
stack up more than one timer.

Usage:
    queue: asyncio.Queue[FeedMessage] = asyncio.Queue()
    feed = FeedConnectionManager(api.feed_url, queue)
    await feed.connect()
    ...
    await feed.close()
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets

from signing_agent.exceptions import FeedMessageError
from signing_agent.feed.protocol import FeedMessage
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_PING_INTERVAL = 20.0

ConnectFactory = Callable[..., Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FeedConnectionManager:
    """
    Reconnecting WebSocket reader that feeds a message queue.

    Args:
        url:             ws:// URL of the client feed.
        queue:           Destination for parsed FeedMessage values.
        reconnect_delay: Seconds to wait before each reconnect attempt.
        ping_interval:   Keepalive ping period (None disables pings).
        connect:         Connection factory, websockets.connect by default.
    """

    def __init__(
        self,
        url: str,
        queue: asyncio.Queue,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        ping_interval: Optional[float] = DEFAULT_PING_INTERVAL,
        connect: Optional[ConnectFactory] = None,
    ) -> None:
        self._url = url
        self._queue = queue
        self._reconnect_delay = reconnect_delay
        self._ping_interval = ping_interval
        self._connect = connect or websockets.connect

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_pending = False
        self._closing = False

        self.reconnect_attempts = 0
        self.dropped_messages = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_pending

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the feed. A failed dial is handled like a disconnect."""
        if self._closing:
            return

        self._state = ConnectionState.CONNECTING
        try:
            self._ws = await self._connect(self._url, ping_interval=self._ping_interval)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            log.warning("feed.connect_failed", url=self._url, error=f"{type(e).__name__}: {e}")
            self._handle_disconnect()
            return

        self._state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._reader_loop(self._ws))
        log.info("feed.connected", url=self._url)

    async def close(self) -> None:
        """Stop reconnecting and close the socket. Safe to call twice."""
        self._closing = True
        ws, self._ws = self._ws, None
        was_open = self._state is not ConnectionState.DISCONNECTED

        for task in (self._reconnect_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._reader_task = None
        self._reconnect_pending = False

        if ws is not None:
            await ws.close()

        self._state = ConnectionState.DISCONNECTED
        if was_open:
            log.info("feed.closed", url=self._url)

    # ─────────────────────────────────────────────────────────────────────────
    # Reader loop — parses frames and hands them to the queue
    # ─────────────────────────────────────────────────────────────────────────

    async def _reader_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._dispatch(raw)
        except websockets.ConnectionClosed as e:
            log.warning("feed.connection_lost", url=self._url, reason=str(e))
        except OSError as e:
            log.warning("feed.read_error", url=self._url, error=f"{type(e).__name__}: {e}")
        except Exception:
            log.exception("feed.reader_failed", url=self._url)
        finally:
            if self._ws is ws:
                self._ws = None
            # close() sets _closing before cancelling us: no reconnect then
            self._handle_disconnect()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = FeedMessage.from_json(raw)
        except FeedMessageError as e:
            self._drop(raw, e.reason, e.payload)
            return
        except Exception as e:
            self._drop(raw, f"{type(e).__name__}: {e}")
            return

        log.debug("feed.message_received", message_id=message.id, type=message.type)
        self._queue.put_nowait(message)

    def _drop(self, raw: str | bytes, reason: str, payload: str = "") -> None:
        self.dropped_messages += 1
        log.warning(
            "feed.message_dropped",
            reason=reason,
            preview=payload or str(raw)[:120],
            dropped_total=self.dropped_messages,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Reconnect
    # ─────────────────────────────────────────────────────────────────────────

    def _handle_disconnect(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        if self._closing:
            return

        log.info("feed.disconnected", url=self._url)
        if self._reconnect_pending:
            return

        self._reconnect_pending = True
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())
        log.info("feed.reconnect_scheduled", delay_seconds=self._reconnect_delay)

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_pending = False
        self.reconnect_attempts += 1
        log.info("feed.reconnecting", attempt=self.reconnect_attempts)
        await self.connect()
