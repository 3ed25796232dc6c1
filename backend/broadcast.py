from typing import Dict, Optional, Protocol
import logging

from room_store import Room

logger = logging.getLogger(__name__)


class Outbox(Protocol):
    def put_nowait(self, item: dict) -> None: ...


class BroadcastGateway:
    """The only way game events reach clients.

    Sends never await: each message is queued on the recipient's outbox
    (an asyncio.Queue drained by the connection's writer task), so a handler
    emits a whole sequence of events without yielding and every client in a
    room sees them in emission order.
    """

    def __init__(self):
        self.outboxes: Dict[str, Outbox] = {}

    def attach(self, connection_id: str, outbox: Outbox):
        self.outboxes[connection_id] = outbox

    def detach(self, connection_id: str) -> Optional[Outbox]:
        return self.outboxes.pop(connection_id, None)

    def send(self, connection_id: str, event: str, payload: Optional[dict] = None):
        outbox = self.outboxes.get(connection_id)
        if outbox is None:
            return
        outbox.put_nowait({"type": event, **(payload or {})})

    def broadcast(self, room: Room, event: str, payload: Optional[dict] = None):
        message = {"type": event, **(payload or {})}
        for player in room.players:
            outbox = self.outboxes.get(player.id)
            if outbox is not None:
                outbox.put_nowait(dict(message))
        logger.debug("Room %s <- %s", room.room_code, event)
