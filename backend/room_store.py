from dataclasses import dataclass
from typing import Dict, List, Optional, Set
import asyncio
import logging
import random

import config
from catalog import Song
from errors import DuplicateRoom

logger = logging.getLogger(__name__)

LOBBY = "LOBBY"
PLAYING = "PLAYING"
FINISHED = "FINISHED"


@dataclass
class Player:
    id: str
    name: str
    is_host: bool = False

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "isHost": self.is_host}


@dataclass(frozen=True)
class Settings:
    total_rounds: int = config.DEFAULT_TOTAL_ROUNDS
    time_per_song: int = config.DEFAULT_TIME_PER_SONG
    category: str = config.DEFAULT_CATEGORY

    def to_dict(self) -> dict:
        return {
            "rounds": self.total_rounds,
            "timePerSong": self.time_per_song,
            "category": self.category,
        }


class Room:
    def __init__(self, room_code: str, settings: Settings):
        self.room_code = room_code
        self.settings = settings
        self.players: List[Player] = []  # join order
        self.host_id: Optional[str] = None
        self.state = LOBBY  # LOBBY, PLAYING, FINISHED
        self.scores: Dict[str, int] = {}
        self.current_round = 0
        self.current_song_index = 0
        self.current_song: Optional[Song] = None
        self.song_start_time: float = 0  # authoritative start, epoch seconds
        self.answered_this_song: Set[str] = set()
        self.is_song_active = False
        self.countdown_remaining = 0
        # Cancellable loop handles; None whenever not armed
        self.song_timer: Optional[asyncio.TimerHandle] = None
        self.countdown_timer: Optional[asyncio.TimerHandle] = None
        self.cleanup_timer: Optional[asyncio.TimerHandle] = None

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def has_name(self, name: str) -> bool:
        return any(p.name == name for p in self.players)

    def add_player(self, player: Player):
        if self.get_player(player.id):
            raise ValueError(f"Player {player.id} already in room {self.room_code}")
        self.players.append(player)
        if not self.host_id:
            self.host_id = player.id
            player.is_host = True
        else:
            player.is_host = False

    def remove_player(self, player_id: str) -> Optional[Player]:
        """Drop a player and hand host to the earliest remaining joiner if needed."""
        player = self.get_player(player_id)
        if player is None:
            return None
        self.players.remove(player)
        self.scores.pop(player_id, None)
        self.answered_this_song.discard(player_id)
        if self.host_id == player_id:
            player.is_host = False
            self.host_id = None
            if self.players:
                new_host = self.players[0]
                new_host.is_host = True
                self.host_id = new_host.id
                logger.info("Host of room %s transferred to '%s'", self.room_code, new_host.name)
        return player

    def cancel_song_timer(self):
        if self.song_timer:
            self.song_timer.cancel()
            self.song_timer = None

    def cancel_countdown_timer(self):
        if self.countdown_timer:
            self.countdown_timer.cancel()
            self.countdown_timer = None

    def cancel_cleanup_timer(self):
        if self.cleanup_timer:
            self.cleanup_timer.cancel()
            self.cleanup_timer = None

    def cancel_timers(self):
        self.cancel_song_timer()
        self.cancel_countdown_timer()
        self.cancel_cleanup_timer()

    def players_payload(self) -> List[dict]:
        return [p.to_dict() for p in self.players]


def normalize_room_code(code) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


class RoomStore:
    """In-memory room code -> Room mapping. The only structure shared across connections."""

    def __init__(self):
        self.rooms: Dict[str, Room] = {}

    def __len__(self):
        return len(self.rooms)

    def __contains__(self, room_code: str) -> bool:
        return normalize_room_code(room_code) in self.rooms

    def get(self, room_code: str) -> Optional[Room]:
        return self.rooms.get(normalize_room_code(room_code))

    def create(self, room_code: str, settings: Settings) -> Room:
        code = normalize_room_code(room_code)
        if code in self.rooms:
            raise DuplicateRoom()
        room = Room(code, settings)
        self.rooms[code] = room
        return room

    def delete(self, room_code: str) -> Optional[Room]:
        room = self.rooms.pop(normalize_room_code(room_code), None)
        if room:
            room.cancel_timers()
            logger.info("Room %s deleted", room.room_code)
        return room

    def generate_code(self) -> str:
        """Generate a unique room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(random.choices(config.ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def clear(self):
        for room in self.rooms.values():
            room.cancel_timers()
        self.rooms.clear()
