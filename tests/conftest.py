#!/usr/bin/env python3
"""
Pytest configuration and fixtures for the chat client tests
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add the src directory to the path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# spans are no-ops in tests, silence the unconfigured warning
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from chat import SessionProtocolClient, StreamingConversationController  # noqa: E402
from errors import NotConnectedError  # noqa: E402
from identity import MemoryStore  # noqa: E402
from transport import ConnectionState, Transport, TransportHandlers  # noqa: E402


class FakeTransport(Transport):
    """In-memory transport; tests open, drop and feed it by hand."""

    def __init__(self):
        super().__init__()
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.connect_calls = 0

    def connect(self, handlers: Optional[TransportHandlers] = None) -> None:
        self.connect_calls += 1
        if self._state != ConnectionState.DISCONNECTED:
            return
        self.handlers = handlers or TransportHandlers()
        self._state = ConnectionState.CONNECTING

    def disconnect(self) -> None:
        self.remove_all_listeners()
        self._state = ConnectionState.DISCONNECTED

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.is_connected():
            raise NotConnectedError()
        self.sent.append((event, payload))

    def open(self) -> None:
        self._set_connected()

    def drop(self) -> None:
        self._set_disconnected()

    def deliver(self, event: str, payload: Any) -> None:
        self._dispatch(event, payload)

    def sent_events(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.sent if name == event]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def protocol(transport):
    return SessionProtocolClient(transport)


@pytest.fixture
def controller(protocol):
    return StreamingConversationController(protocol, user_id="U1")


@pytest.fixture
def connected_controller(controller, transport):
    """Controller with an open transport and acknowledged session S1"""
    controller.start()
    transport.open()
    transport.deliver("chat:started", {"sessionId": "S1"})
    transport.sent.clear()
    return controller


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def course_record():
    return {
        "courseId": "c1",
        "courseName": "OSHA 40-Hour HAZWOPER",
        "description": "Hazardous waste operations and emergency response",
        "price": "£299",
        "duration": "5 days",
        "url": "https://example.com/courses/c1",
    }
