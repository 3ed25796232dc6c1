from typing import Dict, Optional, Tuple
import logging
import uuid

from room_store import Player

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps a live connection to the room it joined and the player it plays as."""

    def __init__(self):
        self.connections: Dict[str, Optional[Tuple[str, str]]] = {}  # connection_id -> (room_code, player_id)

    def on_connect(self) -> str:
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = None
        return connection_id

    def associate(self, connection_id: str, room_code: str, player: Player):
        self.connections[connection_id] = (room_code, player.id)

    def dissociate(self, connection_id: str) -> Optional[Tuple[str, str]]:
        """Forget the room association but keep the connection registered."""
        if connection_id not in self.connections:
            return None
        association = self.connections[connection_id]
        self.connections[connection_id] = None
        return association

    def lookup(self, connection_id: str) -> Optional[Tuple[str, str]]:
        return self.connections.get(connection_id)

    def on_disconnect(self, connection_id: str) -> Optional[Tuple[str, str]]:
        """Drop the connection; returns its (room_code, player_id) if it had joined one."""
        return self.connections.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self.connections

    def __len__(self):
        return len(self.connections)
