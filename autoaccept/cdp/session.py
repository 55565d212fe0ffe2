"""One persistent DevTools websocket session per target.

Every instruction is a request/response exchange keyed by a
monotonically increasing correlation id.  A reader task resolves the
matching future; the caller waits once, with a fixed bound, and gets
None back on timeout.  Errors inside an exchange never close the
session; only the socket's own close does.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from autoaccept.cdp.protocol import (
    build_evaluate,
    build_page_enable,
    encode,
    extract_value,
    is_response,
    parse_message,
)
from autoaccept.models import Configuration, SocketState

logger = logging.getLogger(__name__)

EXCHANGE_TIMEOUT = 2.0
OPEN_TIMEOUT = 5.0

# Shared across sessions so ids never repeat within the process
_message_ids = itertools.count(1)

EventCallback = Callable[[str, dict], None]
CloseCallback = Callable[[str], None]
Connector = Callable[..., Awaitable[Any]]


def next_message_id() -> int:
    return next(_message_ids)


class TargetSession:
    """Websocket session to a single DevTools target."""

    def __init__(
        self,
        target_id: str,
        socket_url: str,
        on_event: Optional[EventCallback] = None,
        on_close: Optional[CloseCallback] = None,
        exchange_timeout: float = EXCHANGE_TIMEOUT,
        connect: Optional[Connector] = None,
    ):
        self.target_id = target_id
        self.socket_url = socket_url
        self.state = SocketState.DISCONNECTED
        self.injected = False
        self.last_config: Optional[Configuration] = None
        self.exchange_timeout = exchange_timeout
        self._on_event = on_event
        self._on_close = on_close
        self._connect = connect or websockets.connect
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._closed_notified = False

    def __repr__(self) -> str:
        return f"TargetSession({self.target_id!r}, state={self.state.value}, injected={self.injected})"

    @property
    def connected(self) -> bool:
        return self.state is SocketState.CONNECTED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> bool:
        """Open the socket and start the reader. False on ConnectionFailed."""
        self.state = SocketState.CONNECTING
        try:
            self._ws = await self._connect(
                self.socket_url, max_size=None, open_timeout=OPEN_TIMEOUT,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.debug("Connection to %s failed: %s", self.target_id, e)
            self.state = SocketState.DISCONNECTED
            return False
        self.state = SocketState.CONNECTED
        self._closed_notified = False
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("Connected to target %s", self.target_id)
        return True

    async def close(self) -> None:
        """Close the socket; the reader then reports the close."""
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Close error on %s: %s", self.target_id, e)
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._handle_closed()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                msg = parse_message(raw)
                if msg is None:
                    continue
                if is_response(msg):
                    future = self._pending.pop(msg["id"], None)
                    if future is not None and not future.done():
                        future.set_result(msg)
                elif self._on_event is not None:
                    self._on_event(self.target_id, msg)
        except ConnectionClosed as e:
            logger.debug("Socket for %s closed: %s", self.target_id, e)
        except Exception as e:
            logger.warning("Reader error on %s: %s", self.target_id, e)
        finally:
            self._handle_closed()

    def _handle_closed(self) -> None:
        self.state = SocketState.DISCONNECTED
        self.injected = False
        # Unblock waiters with an absent result rather than cancelling them
        for future in self._pending.values():
            if not future.done():
                future.set_result(None)
        self._pending.clear()
        if self._closed_notified:
            return
        self._closed_notified = True
        logger.info("Disconnected from target %s", self.target_id)
        if self._on_close is not None:
            self._on_close(self.target_id)

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    async def _exchange(self, msg: dict) -> Optional[dict]:
        if self._ws is None or not self.connected:
            return None
        msg_id = msg["id"]
        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._ws.send(encode(msg))
            return await asyncio.wait_for(future, timeout=self.exchange_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "CDP timeout: %s #%d on %s after %.1fs",
                msg.get("method"), msg_id, self.target_id, self.exchange_timeout,
            )
            return None
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.debug("Exchange #%d on %s failed: %s", msg_id, self.target_id, e)
            return None
        finally:
            self._pending.pop(msg_id, None)
            if not future.done():
                future.cancel()

    async def enable_page_events(self) -> bool:
        """Subscribe to navigation notifications."""
        return await self._exchange(build_page_enable(next_message_id())) is not None

    async def evaluate_raw(self, expression: str) -> Optional[dict]:
        return await self._exchange(build_evaluate(next_message_id(), expression))

    async def evaluate(self, expression: str) -> Any:
        """Evaluate in the page and return the primitive result value (or None)."""
        return extract_value(await self.evaluate_raw(expression))
