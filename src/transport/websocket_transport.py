import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets

from errors import NotConnectedError

from .base import ConnectionState, Transport, TransportHandlers


class WebSocketTransport(Transport):
    """
    Transport over a single WebSocket connection.

    Each event travels as one JSON text frame of the form
    ``{"event": <name>, "data": <payload>}``. Unexpected drops are retried
    with a fixed delay up to ``reconnection_attempts`` times, after which the
    transport stays disconnected until ``connect`` is called again.
    """

    def __init__(
        self,
        url: str,
        reconnection_delay: float = 1.0,
        reconnection_attempts: int = 5,
        open_timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger=logger or logging.getLogger("WebSocketTransport"))
        self.url = url
        self.reconnection_delay = reconnection_delay
        self.reconnection_attempts = reconnection_attempts
        self.open_timeout = open_timeout

        self._runner: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._closing = False

    def connect(self, handlers: Optional[TransportHandlers] = None) -> None:
        if self._runner is not None and not self._runner.done():
            return

        self.handlers = handlers or TransportHandlers()
        self._closing = False
        self._state = ConnectionState.CONNECTING
        self._runner = asyncio.get_running_loop().create_task(self._run())

    def disconnect(self) -> None:
        self._closing = True
        self.remove_all_listeners()

        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
            self._stopping = self._runner
            self.logger.info(f"Disconnecting from {self.url}")
        self._runner = None

        self._outbox = None
        self._state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        """Disconnect and wait for the connection task to finish."""
        self.disconnect()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait until the connection task exits (give-up or disconnect)."""
        tasks = [task for task in (self._runner, self._stopping) if task is not None]
        if tasks:
            await asyncio.wait(tasks)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.is_connected() or self._outbox is None:
            raise NotConnectedError()

        self._outbox.put_nowait(json.dumps({"event": event, "data": payload}))

    async def _run(self) -> None:
        failures = 0

        while not self._closing:
            try:
                async with websockets.connect(
                    self.url, open_timeout=self.open_timeout
                ) as websocket:
                    failures = 0
                    await self._serve(websocket)
                self.logger.info(f"Connection to {self.url} closed by server")
            except websockets.exceptions.ConnectionClosed as e:
                self.logger.warning(f"Connection to {self.url} dropped: {e}")
            except (
                OSError,
                asyncio.TimeoutError,
                websockets.exceptions.WebSocketException,
            ) as e:
                self.logger.error(f"Failed to connect to {self.url}: {e}")
            finally:
                if asyncio.current_task() is self._runner:
                    self._outbox = None
                    self._set_disconnected()

            if self._closing:
                break

            failures += 1
            if failures > self.reconnection_attempts:
                self.logger.warning(
                    f"Giving up on {self.url} after "
                    f"{self.reconnection_attempts} reconnection attempts"
                )
                break

            self.logger.info(
                f"Reconnecting to {self.url} in {self.reconnection_delay}s "
                f"(attempt {failures}/{self.reconnection_attempts})"
            )
            await asyncio.sleep(self.reconnection_delay)
            if not self._closing:
                self._state = ConnectionState.CONNECTING

    async def _serve(self, websocket) -> None:
        outbox: asyncio.Queue = asyncio.Queue()
        self._outbox = outbox
        writer = asyncio.create_task(self._write_loop(websocket, outbox))

        self.logger.info(f"Connected to {self.url}")
        self._set_connected()

        try:
            async for raw in websocket:
                self._handle_frame(raw)
        finally:
            writer.cancel()

    async def _write_loop(self, websocket, outbox: asyncio.Queue) -> None:
        while True:
            frame = await outbox.get()
            try:
                await websocket.send(frame)
            except websockets.exceptions.ConnectionClosed:
                self.logger.debug("Dropping outbound frame, connection closed")
                return

    def _handle_frame(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self.logger.warning(f"Ignoring non-JSON frame: {raw[:200]}")
            return

        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            self.logger.warning(f"Ignoring frame without event name: {message}")
            return

        self._dispatch(message["event"], message.get("data"))
