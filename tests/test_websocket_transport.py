#!/usr/bin/env python3
"""
Test the WebSocket transport against a local websockets server
"""

import asyncio
import json
import socket

import pytest
import pytest_asyncio
import websockets

from chat import SessionProtocolClient, StreamingConversationController
from errors import NotConnectedError
from transport import ConnectionState, TransportHandlers, WebSocketTransport


class FakeChatServer:
    """Scripted assistant service speaking the JSON event envelope"""

    def __init__(self):
        self.server = None
        self.port = None
        self.connections = []
        self.received = []
        self.raw_frames_on_connect = []

    async def start(self):
        self.server = await websockets.serve(self.handler, "127.0.0.1", 0)
        self.port = list(self.server.sockets)[0].getsockname()[1]

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    @property
    def url(self):
        return f"ws://127.0.0.1:{self.port}"

    async def handler(self, websocket):
        self.connections.append(websocket)
        for frame in self.raw_frames_on_connect:
            await websocket.send(frame)

        try:
            async for raw in websocket:
                message = json.loads(raw)
                self.received.append(message)
                await self.respond(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            pass

    async def respond(self, websocket, message):
        event = message["event"]
        data = message["data"]

        if event == "chat:start":
            await self.send(websocket, "chat:started", {"sessionId": "S1"})
        elif event == "chat:message":
            await self.send(websocket, "chat:partial", {"delta": "OSHA "})
            await self.send(websocket, "chat:partial", {"delta": "licences..."})
            await self.send(
                websocket,
                "chat:final",
                {
                    "reply": "OSHA licences require...",
                    "hasNewRecommendations": True,
                    "recommendations": [
                        {
                            "courseId": "c1",
                            "courseName": "OSHA 40-Hour HAZWOPER",
                            "description": "",
                            "price": "£299",
                            "duration": "5 days",
                            "url": "https://example.com/courses/c1",
                        }
                    ],
                    "previousResponseId": "r1",
                    "sessionId": data.get("sessionId") or "S1",
                },
            )

    async def send(self, websocket, event, data):
        await websocket.send(json.dumps({"event": event, "data": data}))


class CallbackCounter:
    def __init__(self):
        self.connects = 0
        self.disconnects = 0

    def handlers(self):
        return TransportHandlers(on_connect=self.on_connect, on_disconnect=self.on_disconnect)

    def on_connect(self):
        self.connects += 1

    def on_disconnect(self):
        self.disconnects += 1


async def wait_until(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest_asyncio.fixture
async def chat_server():
    server = FakeChatServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def ws_transport(chat_server):
    transport = WebSocketTransport(chat_server.url, reconnection_delay=0.05, reconnection_attempts=3)
    yield transport
    await transport.close()


@pytest.mark.asyncio
async def test_connect_and_exchange_events(ws_transport, chat_server):
    counter = CallbackCounter()
    started = []
    ws_transport.on("chat:started", started.append)

    ws_transport.connect(counter.handlers())
    assert ws_transport.state == ConnectionState.CONNECTING
    await wait_until(ws_transport.is_connected)

    ws_transport.emit("chat:start", {"userId": "U1"})
    await wait_until(lambda: started)

    assert counter.connects == 1
    assert chat_server.received == [{"event": "chat:start", "data": {"userId": "U1"}}]
    assert started == [{"sessionId": "S1"}]


@pytest.mark.asyncio
async def test_emit_preserves_order(ws_transport, chat_server):
    ws_transport.connect()
    await wait_until(ws_transport.is_connected)

    for i in range(20):
        ws_transport.emit("chat:ping", {"seq": i})
    await wait_until(lambda: len(chat_server.received) == 20)

    assert [m["data"]["seq"] for m in chat_server.received] == list(range(20))


@pytest.mark.asyncio
async def test_emit_when_disconnected_raises(ws_transport):
    with pytest.raises(NotConnectedError):
        ws_transport.emit("chat:start", {"userId": "U1"})


@pytest.mark.asyncio
async def test_connect_is_idempotent(ws_transport, chat_server):
    counter = CallbackCounter()
    ws_transport.connect(counter.handlers())
    ws_transport.connect(counter.handlers())
    await wait_until(ws_transport.is_connected)
    ws_transport.connect(counter.handlers())
    await asyncio.sleep(0.1)

    assert len(chat_server.connections) == 1
    assert counter.connects == 1


@pytest.mark.asyncio
async def test_reconnects_after_server_drop(ws_transport, chat_server):
    counter = CallbackCounter()
    ws_transport.connect(counter.handlers())
    await wait_until(ws_transport.is_connected)

    await chat_server.connections[0].close()
    await wait_until(lambda: counter.connects == 2)

    assert counter.disconnects == 1
    assert len(chat_server.connections) == 2
    assert ws_transport.is_connected()


@pytest.mark.asyncio
async def test_gives_up_after_bounded_attempts():
    counter = CallbackCounter()
    transport = WebSocketTransport(
        f"ws://127.0.0.1:{unused_port()}",
        reconnection_delay=0.01,
        reconnection_attempts=2,
        open_timeout=1.0,
    )

    transport.connect(counter.handlers())
    await asyncio.wait_for(transport.wait_closed(), timeout=5.0)

    assert transport.state == ConnectionState.DISCONNECTED
    assert counter.connects == 0
    assert counter.disconnects == 0


@pytest.mark.asyncio
async def test_disconnect_is_silent_and_safe(ws_transport, chat_server):
    counter = CallbackCounter()
    received = []
    ws_transport.on("chat:started", received.append)
    ws_transport.connect(counter.handlers())
    await wait_until(ws_transport.is_connected)

    ws_transport.disconnect()
    ws_transport.disconnect()
    await ws_transport.wait_closed()

    assert not ws_transport.is_connected()
    assert counter.disconnects == 0
    with pytest.raises(NotConnectedError):
        ws_transport.emit("chat:start", {"userId": "U1"})


@pytest.mark.asyncio
async def test_connect_right_after_disconnect_reconnects(ws_transport, chat_server):
    ws_transport.connect()
    await wait_until(ws_transport.is_connected)

    counter = CallbackCounter()
    ws_transport.disconnect()
    ws_transport.connect(counter.handlers())
    await wait_until(ws_transport.is_connected)
    await asyncio.sleep(0.1)

    assert ws_transport.is_connected()
    assert counter.connects == 1
    assert counter.disconnects == 0
    assert len(chat_server.connections) == 2


@pytest.mark.asyncio
async def test_malformed_frames_are_ignored(ws_transport, chat_server):
    chat_server.raw_frames_on_connect = [
        "not json",
        json.dumps(["no", "event"]),
        json.dumps({"data": {"delta": "x"}}),
        json.dumps({"event": "chat:partial", "data": {"delta": "ok"}}),
    ]
    partials = []
    ws_transport.on("chat:partial", partials.append)

    ws_transport.connect()
    await wait_until(lambda: partials)

    assert partials == [{"delta": "ok"}]
    assert ws_transport.is_connected()


@pytest.mark.asyncio
async def test_full_conversation_over_websocket(ws_transport, chat_server):
    controller = StreamingConversationController(
        SessionProtocolClient(ws_transport), user_id="U1", reply_timeout=5.0
    )
    controller.start()
    await wait_until(lambda: controller.state.session_id == "S1")

    assert controller.submit("How to get OSHA licence?")
    await wait_until(lambda: not controller.state.is_loading)

    state = controller.state
    assert [(m.role.value, m.content) for m in state.messages] == [
        ("user", "How to get OSHA licence?"),
        ("assistant", "OSHA licences require..."),
    ]
    assert [rec.course_id for rec in state.recommendations] == ["c1"]
    assert controller.protocol.session.previous_response_id == "r1"
    assert chat_server.received[1] == {
        "event": "chat:message",
        "data": {"userId": "U1", "message": "How to get OSHA licence?", "sessionId": "S1"},
    }

    controller.stop()
