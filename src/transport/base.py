import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

Listener = Callable[[Any], None]


class ConnectionState(str, Enum):
    """Connection state owned by a transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class TransportHandlers:
    """Callbacks fired on connection transitions."""

    on_connect: Optional[Callable[[], None]] = None
    on_disconnect: Optional[Callable[[], None]] = None


class Transport(ABC):
    """
    Named-event transport capability.

    Concrete transports own one connection to the remote service and deliver
    inbound events, in arrival order, to listeners registered with `on`.
    Subclasses report transitions through `_set_connected` and
    `_set_disconnected` and deliver inbound events through `_dispatch`.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(type(self).__name__)
        self.handlers = TransportHandlers()
        self._listeners: Dict[str, List[Listener]] = {}
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @abstractmethod
    def connect(self, handlers: Optional[TransportHandlers] = None) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Queue one named event for sending; raises NotConnectedError when offline."""

    def on(self, event: str, listener: Listener) -> None:
        """Register a listener for an inbound event."""
        self._listeners.setdefault(event, []).append(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
        self.handlers = TransportHandlers()

    def _dispatch(self, event: str, payload: Any) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            self.logger.debug(f"No listener for event {event}")
            return

        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                self.logger.exception(f"Listener for event {event} failed")

    def _set_connected(self) -> None:
        if self._state == ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.CONNECTED
        self._fire(self.handlers.on_connect, "on_connect")

    def _set_disconnected(self) -> None:
        was_connected = self._state == ConnectionState.CONNECTED
        self._state = ConnectionState.DISCONNECTED
        if was_connected:
            self._fire(self.handlers.on_disconnect, "on_disconnect")

    def _fire(self, callback: Optional[Callable[[], None]], name: str) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            self.logger.exception(f"{name} handler failed")
