"""Collaboration socket: presence events, relaying and lifecycle."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config.settings import Settings
from config.websocket_config import WebSocketCloseCode, WebSocketConfig
from main import create_app
from models.session_model import ConnectionState
from services.collaboration import CollaborationGateway
from services.session_registry import SessionChannel, SessionRegistry
from storage import create_db_engine

CELL_UPDATE = {
    "type": "CellUpdate",
    "sheet": "default",
    "row": 1,
    "col": 2,
    "value": "42",
    "font_weight": None,
    "font_style": None,
    "background_color": None,
    "user_id": "someone",
}


def sessions(client: TestClient) -> int:
    return client.get("/health").json()["sessions"]


class TestPresence:
    def test_join_and_leave_are_announced(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws"):
                joined = first.receive_json()
                assert joined["type"] == "UserJoined"
                assert sessions(client) == 2

            left = first.receive_json()
            assert left == {"type": "UserLeft", "user_id": joined["user_id"]}
            assert sessions(client) == 1

    def test_session_ids_are_distinct(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws"):
                second_id = first.receive_json()["user_id"]
            first.receive_json()
            with client.websocket_connect("/ws"):
                third_id = first.receive_json()["user_id"]
            assert second_id != third_id


class TestRelay:
    def test_cell_update_relayed_verbatim_without_echo(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws") as second:
                first.receive_json()  # second joined

                raw = json.dumps(CELL_UPDATE)
                first.send_text(raw)
                assert second.receive_text() == raw

                # If first had been echoed its own update it would arrive before this
                reply = json.dumps({**CELL_UPDATE, "value": "reply"})
                second.send_text(reply)
                assert first.receive_text() == reply

    def test_camel_case_update_without_type_is_relayed(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws") as second:
                first.receive_json()

                raw = json.dumps({
                    "sheet": "default", "row": 0, "col": 0, "value": "x",
                    "fontWeight": "bold", "userId": "abc",
                })
                first.send_text(raw)
                assert second.receive_text() == raw

    def test_unrecognised_messages_are_ignored(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws") as second:
                first.receive_json()

                first.send_text("not json")
                first.send_text(json.dumps({"type": "Chat", "text": "hi"}))
                first.send_text(json.dumps({**CELL_UPDATE, "type": "UserJoined"}))
                first.send_bytes(b"\x00\x01")
                valid = json.dumps(CELL_UPDATE)
                first.send_text(valid)

                assert second.receive_text() == valid

    def test_relayed_updates_are_not_persisted(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws") as second:
                first.receive_json()
                first.send_text(json.dumps(CELL_UPDATE))
                second.receive_text()

        assert client.get("/cells").json() == []


class TestServerBroadcast:
    def test_http_write_reaches_every_socket(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as first:
            with client.websocket_connect("/ws") as second:
                first.receive_json()

                response = client.post("/cells", json={"row": 0, "col": 0, "value": "=SUM(1,2)"})
                assert response.status_code == 200

                for socket in (first, second):
                    event = socket.receive_json()
                    assert event["type"] == "CellUpdate"
                    assert event["value"] == "3"
                    assert event["user_id"] == "system"

    def test_rejected_formula_is_not_broadcast(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as socket:
            assert client.post("/cells", json={"row": 0, "col": 0, "value": "=1/0"}).status_code == 400
            client.post("/cells", json={"row": 0, "col": 1, "value": "ok"})

            assert socket.receive_json()["value"] == "ok"


def test_connection_limit() -> None:
    settings = Settings(_env_file=None, DATABASE_URL="sqlite://", WS_MAX_CONNECTIONS=1)
    app = create_app(settings, engine=create_db_engine(settings.DATABASE_URL))
    with TestClient(app) as client:
        with client.websocket_connect("/ws"):
            with pytest.raises(WebSocketDisconnect) as excinfo:
                with client.websocket_connect("/ws"):
                    pass
            assert excinfo.value.code == WebSocketCloseCode.TRY_AGAIN_LATER
            assert sessions(client) == 1


class FakeWebSocket:
    """Accepts after yielding to the loop, then disconnects on first read."""

    client = None

    def __init__(self):
        self.closed_with = None
        self.accepted = False
        self.sent = []

    async def accept(self):
        await asyncio.sleep(0)
        self.accepted = True

    async def receive(self):
        await asyncio.sleep(0)
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_text(self, text: str):
        self.sent.append(text)

    async def close(self, code: int = 1000):
        self.closed_with = code


@pytest.fixture
def peer(registry: SessionRegistry) -> SessionChannel:
    channel = SessionChannel()
    registry.register("peer", channel)
    return channel


class TestGateway:
    def test_activate_registers_and_announces(self, registry, peer) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry)
        gateway.activate()

        assert gateway.session.state == ConnectionState.ACTIVE
        assert gateway.session_id in registry
        assert json.loads(peer.drain()[0]) == {"type": "UserJoined", "user_id": gateway.session_id}
        assert gateway.channel.drain() == []

    def test_messages_before_activation_are_ignored(self, registry, peer) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry)
        assert gateway.handle_text(json.dumps(CELL_UPDATE)) is False
        assert peer.drain() == []

    def test_handle_text_counts_messages(self, registry, peer) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry)
        gateway.activate()
        peer.drain()

        assert gateway.handle_text(json.dumps(CELL_UPDATE)) is True
        assert gateway.handle_text("{}") is False

        assert gateway.session.messages_received == 2
        assert gateway.session.messages_relayed == 1
        assert len(peer.drain()) == 1

    def test_close_is_idempotent(self, registry, peer) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry)
        gateway.activate()
        peer.drain()

        gateway.close()
        gateway.close()

        assert gateway.session_id not in registry
        assert gateway.channel.closed
        assert [json.loads(m)["type"] for m in peer.drain()] == ["UserLeft"]
        assert gateway.handle_text(json.dumps(CELL_UPDATE)) is False

    def test_refuses_when_full(self, registry, peer) -> None:
        websocket = FakeWebSocket()
        gateway = CollaborationGateway(websocket, registry, WebSocketConfig(max_connections=1))

        asyncio.run(gateway.run())

        assert not websocket.accepted
        assert websocket.closed_with == WebSocketCloseCode.TRY_AGAIN_LATER
        assert gateway.session.state == ConnectionState.CLOSED
        assert registry.session_ids() == ["peer"]
        assert peer.drain() == []

    def test_concurrent_connects_respect_limit(self, registry) -> None:
        config = WebSocketConfig(max_connections=3)
        sockets = [FakeWebSocket() for _ in range(10)]

        async def connect_all() -> None:
            await asyncio.gather(*(
                CollaborationGateway(websocket, registry, config).run() for websocket in sockets))

        asyncio.run(connect_all())

        accepted = [websocket for websocket in sockets if websocket.accepted]
        refused = [websocket for websocket in sockets
                   if websocket.closed_with == WebSocketCloseCode.TRY_AGAIN_LATER]
        assert len(accepted) == 3
        assert len(refused) == 7
        assert len(registry) == 0

    def test_session_closed_before_activation_is_not_announced(self, registry, peer) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry)
        assert gateway.reserve()

        gateway.close()

        assert gateway.session_id not in registry
        assert peer.drain() == []

    def test_queue_size_comes_from_config(self, registry) -> None:
        gateway = CollaborationGateway(FakeWebSocket(), registry, WebSocketConfig(message_queue_size=3))
        assert gateway.channel.maxsize == 3
