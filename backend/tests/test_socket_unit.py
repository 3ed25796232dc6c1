"""
Unit tests for socket_manager.py: request validation, acknowledgements,
dispatch to the game engine, and the per-connection reader/writer loop.
"""
import sys
import os
import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from broadcast import BroadcastGateway
from catalog import Song, SongCatalog
from connection_registry import ConnectionRegistry
from game_engine import GameEngine
from room_store import LOBBY, PLAYING, RoomStore
from socket_manager import SocketManager
import config


# ---------------------------------------------------------------------------
# Mocks
# ---------------------------------------------------------------------------

class RecordingOutbox:
    def __init__(self):
        self.messages: list[dict] = []

    def put_nowait(self, message):
        self.messages.append(message)

    def last(self, msg_type):
        for msg in reversed(self.messages):
            if msg["type"] == msg_type:
                return msg
        return None

    def all(self, msg_type):
        return [m for m in self.messages if m["type"] == msg_type]


class MockWebSocket:
    """Lightweight mock for fastapi.WebSocket fed from a list of raw frames."""
    def __init__(self, frames=(), origin=""):
        self.frames = list(frames)
        self.sent_messages: list[dict] = []
        self.accepted = False
        self.closed = False
        self.close_code = None
        self._origin = origin

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        self.closed = True
        self.close_code = code

    async def send_json(self, data: dict):
        self.sent_messages.append(data)

    async def receive_text(self):
        # give the writer task a chance to flush between frames
        await asyncio.sleep(0.01)
        if not self.frames:
            raise WebSocketDisconnect(code=1000)
        return self.frames.pop(0)

    @property
    def headers(self):
        return {"origin": self._origin}

    def all(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent_messages if m.get("type") == msg_type]


class NullHandle:
    def cancel(self):
        pass


class NullLoop:
    """Accepts timers and never fires them."""
    def call_later(self, delay, callback, *args):
        return NullHandle()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SONG = Song("pokemon", "Pokemon Theme", "Jason Paige", "/audio/pokemon.mp3", "pokemon")


def make_manager(loop=None):
    engine = GameEngine(RoomStore(), BroadcastGateway(), SongCatalog([SONG]),
                        registry=ConnectionRegistry(), loop=loop or NullLoop())
    return SocketManager(engine)


def attach(sm, connection_id):
    outbox = RecordingOutbox()
    sm.gateway.attach(connection_id, outbox)
    sm.registry.connections[connection_id] = None
    return outbox


def create(sm, connection_id="host", code="ABC123", nickname="Alice", **extra):
    sm.handle_message(connection_id, {"type": "createRoom", "code": code, "nickname": nickname, **extra})


# ===========================================================================
# createRoom / joinRoom acknowledgements
# ===========================================================================

class TestCreateRoomAck:
    def test_ok_ack_with_normalized_code(self):
        sm = make_manager()
        outbox = attach(sm, "host")
        create(sm, code="abc123")
        ack = outbox.last("ack")
        assert ack == {"type": "ack", "event": "createRoom", "ok": True, "roomCode": "ABC123"}

    def test_request_id_echoed(self):
        sm = make_manager()
        outbox = attach(sm, "host")
        create(sm, requestId=7)
        assert outbox.last("ack")["requestId"] == 7

    def test_options_applied(self):
        sm = make_manager()
        attach(sm, "host")
        create(sm, options={"category": "Anime", "rounds": 3, "timePerSong": 20})
        room = sm.engine.store.get("ABC123")
        assert room.settings.total_rounds == 3
        assert room.settings.time_per_song == 20
        assert room.settings.category == "Anime"

    def test_duplicate_room_fails(self):
        sm = make_manager()
        attach(sm, "host")
        other = attach(sm, "other")
        create(sm)
        create(sm, connection_id="other", nickname="Bob")
        ack = other.last("ack")
        assert ack["ok"] is False
        assert ack["message"] == "Room code already in use"
        assert len(sm.engine.store.get("ABC123").players) == 1

    def test_invalid_options_fail_without_mutation(self):
        sm = make_manager()
        outbox = attach(sm, "host")
        create(sm, options={"rounds": 99})
        ack = outbox.last("ack")
        assert ack["ok"] is False
        assert "Rounds" in ack["message"]
        assert len(sm.engine.store) == 0

    def test_blank_nickname_fails(self):
        sm = make_manager()
        outbox = attach(sm, "host")
        create(sm, nickname="   ")
        assert outbox.last("ack")["ok"] is False
        assert len(sm.engine.store) == 0

    def test_missing_code_generates_one(self):
        sm = make_manager()
        outbox = attach(sm, "host")
        sm.handle_message("host", {"type": "createRoom", "nickname": "Alice"})
        ack = outbox.last("ack")
        assert ack["ok"] is True
        assert len(ack["roomCode"]) == config.ROOM_CODE_LENGTH

    def test_too_many_rooms(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_ROOMS", 1)
        sm = make_manager()
        attach(sm, "host")
        other = attach(sm, "other")
        create(sm)
        create(sm, connection_id="other", code="XYZ789", nickname="Bob")
        assert other.last("ack")["ok"] is False
        assert "XYZ789" not in sm.engine.store


class TestJoinRoomAck:
    def test_join_ok(self):
        sm = make_manager()
        attach(sm, "host")
        guest = attach(sm, "guest")
        create(sm)
        sm.handle_message("guest", {"type": "joinRoom", "code": "abc123", "nickname": "Bob"})
        assert guest.last("ack") == {"type": "ack", "event": "joinRoom", "ok": True, "roomCode": "ABC123"}
        assert sm.registry.lookup("guest") == ("ABC123", "guest")

    def test_room_not_found(self):
        sm = make_manager()
        guest = attach(sm, "guest")
        sm.handle_message("guest", {"type": "joinRoom", "code": "NOPE99", "nickname": "Bob"})
        ack = guest.last("ack")
        assert ack["ok"] is False
        assert ack["message"] == "Room not found"

    def test_name_taken(self):
        sm = make_manager()
        attach(sm, "host")
        guest = attach(sm, "guest")
        create(sm)
        sm.handle_message("guest", {"type": "joinRoom", "code": "ABC123", "nickname": "Alice"})
        assert guest.last("ack")["ok"] is False
        assert guest.last("ack")["message"] == "Nickname already taken in this room"

    def test_failed_ack_leaves_caller_in_room(self):
        sm = make_manager()
        host = attach(sm, "host")
        create(sm)
        sm.handle_message("host", {"type": "joinRoom", "code": "NOPE99", "nickname": "Alice", "requestId": 3})
        assert host.last("ack") == {"type": "ack", "event": "joinRoom", "ok": False,
                                    "message": "Room not found", "requestId": 3}
        assert sm.registry.lookup("host") == ("ABC123", "host")
        assert [p.name for p in sm.engine.store.get("ABC123").players] == ["Alice"]

    def test_missing_fields(self):
        sm = make_manager()
        guest = attach(sm, "guest")
        sm.handle_message("guest", {"type": "joinRoom"})
        assert guest.last("ack")["ok"] is False


# ===========================================================================
# Game commands
# ===========================================================================

class TestGameCommands:
    def setup_room(self, loop=None):
        sm = make_manager(loop)
        host = attach(sm, "host")
        guest = attach(sm, "guest")
        create(sm)
        sm.handle_message("guest", {"type": "joinRoom", "code": "ABC123", "nickname": "Bob"})
        return sm, host, guest

    def test_non_host_start_ignored(self):
        sm, host, guest = self.setup_room()
        sm.handle_message("guest", {"type": "start-game", "code": "ABC123"})
        assert sm.engine.store.get("ABC123").state == LOBBY
        assert guest.all("new-round") == []

    def test_host_start(self):
        sm, host, guest = self.setup_room()
        sm.handle_message("host", {"type": "start-game", "code": "abc123"})
        assert sm.engine.store.get("ABC123").state == PLAYING
        assert len(guest.all("new-round")) == 1

    def test_malformed_start_ignored(self):
        sm, host, guest = self.setup_room()
        sm.handle_message("host", {"type": "start-game"})
        assert sm.engine.store.get("ABC123").state == LOBBY
        assert host.all("error") == []

    def test_submit_answer(self):
        sm, host, guest = self.setup_room()
        sm.handle_message("host", {"type": "start-game", "code": "ABC123"})
        sm.handle_message("guest", {"type": "submit-answer", "code": "ABC123", "answer": "Pokemon!"})
        result = host.last("round-result")
        assert result["playerId"] == "guest"
        assert result["isCorrect"] is True
        assert host.last("round-end")["reason"] == "correct"

    def test_leave_room(self):
        sm, host, guest = self.setup_room()
        sm.handle_message("guest", {"type": "leaveRoom", "code": "ABC123"})
        assert guest.last("ack")["ok"] is True
        room = sm.engine.store.get("ABC123")
        assert [p.name for p in room.players] == ["Alice"]
        assert [p["name"] for p in host.last("roomUpdated")["players"]] == ["Alice"]

    def test_unknown_type(self):
        sm = make_manager()
        outbox = attach(sm, "c1")
        sm.handle_message("c1", {"type": "DANCE"})
        assert outbox.last("error")["message"] == "Unknown message type"

    def test_rooms_are_isolated(self):
        sm, host, guest = self.setup_room()
        other = attach(sm, "other")
        create(sm, connection_id="other", code="ZZZ999", nickname="Zed")
        sm.handle_message("other", {"type": "start-game", "code": "ABC123"})
        sm.handle_message("host", {"type": "start-game", "code": "ZZZ999"})
        assert sm.engine.store.get("ABC123").state == LOBBY
        assert sm.engine.store.get("ZZZ999").state == LOBBY
        assert other.all("roomUpdated")[-1]["roomCode"] == "ZZZ999"


# ===========================================================================
# Reader / writer loop
# ===========================================================================

class TestConnectLoop:
    @pytest.mark.asyncio
    async def test_rejected_create_keeps_connection_open(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        frames = [
            json.dumps({"type": "createRoom", "code": "ABC123", "nickname": "Alice"}),
            json.dumps({"type": "createRoom", "code": "ABC123", "nickname": "Alice"}),
            json.dumps({"type": "leaveRoom"}),
        ]
        ws = MockWebSocket(frames)
        await sm.connect(ws)
        acks = ws.all("ack")
        assert [a["ok"] for a in acks] == [True, False, True]
        assert acks[1]["message"] == "Room code already in use"

    @pytest.mark.asyncio
    async def test_connected_then_ack_in_order(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        ws = MockWebSocket([json.dumps({"type": "createRoom", "code": "ABC123", "nickname": "Alice"})])
        await sm.connect(ws)
        assert ws.accepted is True
        types = [m["type"] for m in ws.sent_messages]
        assert types[0] == "connected"
        assert types[1:] == ["roomUpdated", "ack"]

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up_room(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        ws = MockWebSocket([json.dumps({"type": "createRoom", "code": "ABC123", "nickname": "Alice"})])
        await sm.connect(ws)
        assert len(sm.engine.store) == 0
        assert len(sm.registry) == 0
        assert sm.gateway.outboxes == {}

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        ws = MockWebSocket(["{not json", json.dumps([1, 2])])
        await sm.connect(ws)
        assert len(ws.all("error")) == 2
        assert ws.all("error")[0]["message"] == "Invalid message format"

    @pytest.mark.asyncio
    async def test_message_too_large(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        ws = MockWebSocket(["x" * (config.MAX_WS_MESSAGE_SIZE + 1)])
        await sm.connect(ws)
        assert ws.all("error")[0]["message"] == "Message too large"

    @pytest.mark.asyncio
    async def test_rate_limited(self, monkeypatch):
        monkeypatch.setattr(config, "WS_RATE_LIMIT_PER_SEC", 2)
        sm = make_manager(loop=asyncio.get_running_loop())
        frames = [json.dumps({"type": "leaveRoom"})] * 4
        ws = MockWebSocket(frames)
        await sm.connect(ws)
        assert any(m["message"] == "Too many messages" for m in ws.all("error"))

    @pytest.mark.asyncio
    async def test_origin_rejected(self):
        sm = make_manager(loop=asyncio.get_running_loop())
        sm.allowed_origins = ["http://localhost:5173"]
        ws = MockWebSocket(origin="http://evil.example")
        await sm.connect(ws)
        assert ws.accepted is False
        assert ws.close_code == 1008
