from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from typing import Callable, Dict, List
import json
import time
import asyncio
import logging

import config
from errors import GameError
from game_engine import GameEngine
from schemas import (CreateRoomRequest, JoinRoomRequest, StartGameRequest, SubmitAnswerRequest,
                     first_error_message)

logger = logging.getLogger(__name__)


class SocketManager:
    """WebSocket front door: one reader loop and one writer task per connection.

    Inbound messages are validated here and handed to the game engine, whose
    handlers are synchronous; outbound events travel through the broadcast
    gateway onto the connection's queue and are written by its writer task.
    """

    def __init__(self, engine: GameEngine):
        self.engine = engine
        self.gateway = engine.gateway
        self.registry = engine.registry
        self.allowed_origins: List[str] = []
        # WS rate limiting: connection_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}
        self._handlers: Dict[str, Callable[[str, dict], None]] = {
            "createRoom": self._on_create_room,
            "joinRoom": self._on_join_room,
            "start-game": self._on_start_game,
            "submit-answer": self._on_submit_answer,
            "leaveRoom": self._on_leave_room,
        }

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection_id = self.registry.on_connect()
        outbox: asyncio.Queue = asyncio.Queue()
        self.gateway.attach(connection_id, outbox)
        writer_task = asyncio.create_task(self._writer(websocket, outbox, connection_id))
        self.gateway.send(connection_id, "connected", {"id": connection_id})
        logger.info("Client %s connected", connection_id)

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    self.gateway.send(connection_id, "error", {"message": "Message too large"})
                    continue

                # Per-client rate limiting
                now = time.time()
                timestamps = self.msg_timestamps.setdefault(connection_id, [])
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    self.gateway.send(connection_id, "error", {"message": "Too many messages"})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", connection_id, data[:100])
                    self.gateway.send(connection_id, "error", {"message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    self.gateway.send(connection_id, "error", {"message": "Invalid message format"})
                    continue

                self.handle_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", connection_id)
        except Exception:
            logger.exception("WebSocket error for client %s", connection_id)
        finally:
            self.engine.disconnect(connection_id)
            self.gateway.detach(connection_id)
            self.msg_timestamps.pop(connection_id, None)
            writer_task.cancel()

    async def _writer(self, websocket: WebSocket, outbox: asyncio.Queue, connection_id: str):
        """Drain a connection's outbox in order."""
        try:
            while True:
                message = await outbox.get()
                await websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("Stopped writing to client %s", connection_id, exc_info=True)

    def handle_message(self, connection_id: str, message: dict):
        msg_type = message.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            logger.warning("Unknown message type %r from client %s", msg_type, connection_id)
            self.gateway.send(connection_id, "error", {"message": "Unknown message type"})
            return
        handler(connection_id, message)

    def _ack(self, connection_id: str, request: dict, ok: bool, **fields):
        payload = {"event": request.get("type"), "ok": ok, **fields}
        if "requestId" in request:
            payload["requestId"] = request["requestId"]
        self.gateway.send(connection_id, "ack", payload)

    def _on_create_room(self, connection_id: str, message: dict):
        try:
            request = CreateRoomRequest.model_validate(message)
            room_code = self.engine.create_room(connection_id, request.code, request.nickname,
                                                request.options.to_settings())
        except PydanticValidationError as e:
            logger.warning("createRoom rejected for client %s: %s", connection_id, first_error_message(e))
            self._ack(connection_id, message, False, message=first_error_message(e))
            return
        except GameError as e:
            logger.info("createRoom failed for client %s: %s", connection_id, e.message)
            self._ack(connection_id, message, False, message=e.message)
            return
        self._ack(connection_id, message, True, roomCode=room_code)

    def _on_join_room(self, connection_id: str, message: dict):
        try:
            request = JoinRoomRequest.model_validate(message)
            room_code = self.engine.join_room(connection_id, request.code, request.nickname)
        except PydanticValidationError as e:
            logger.warning("joinRoom rejected for client %s: %s", connection_id, first_error_message(e))
            self._ack(connection_id, message, False, message=first_error_message(e))
            return
        except GameError as e:
            logger.info("joinRoom failed for client %s: %s", connection_id, e.message)
            self._ack(connection_id, message, False, message=e.message)
            return
        self._ack(connection_id, message, True, roomCode=room_code)

    def _on_start_game(self, connection_id: str, message: dict):
        try:
            request = StartGameRequest.model_validate(message)
        except PydanticValidationError:
            logger.debug("Ignoring malformed start-game from client %s", connection_id)
            return
        self.engine.start_game(request.code, connection_id)

    def _on_submit_answer(self, connection_id: str, message: dict):
        try:
            request = SubmitAnswerRequest.model_validate(message)
        except PydanticValidationError:
            logger.debug("Ignoring malformed submit-answer from client %s", connection_id)
            return
        self.engine.submit_answer(request.code, connection_id, request.answer)

    def _on_leave_room(self, connection_id: str, message: dict):
        self.engine.leave_room(connection_id)
        self._ack(connection_id, message, True)
