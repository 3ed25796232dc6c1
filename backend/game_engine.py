"""Room lifecycle and the timer-driven game state machine.

LOBBY -> PLAYING -> FINISHED. Every public method and every timer callback
runs synchronously on the event loop and never awaits, so a handler always
finishes its mutation (and queues all of its events) before the next inbound
message or timer is dispatched. No per-room locks are needed.

Timers are plain loop handles stored on the Room. Each one is cancelled and
nulled before a replacement is armed, and ``is_song_active`` makes ending a
song idempotent when a correct answer and the timeout land back to back.
"""
from typing import Callable, Optional
import asyncio
import logging
import time

import config
import leaderboard
import scoring
from broadcast import BroadcastGateway
from catalog import SongCatalog
from connection_registry import ConnectionRegistry
from errors import (DuplicateRoom, InvalidNickname, InvalidRoomCode, NameTaken, RoomFull,
                    RoomNotFound, TooManyRooms)
from room_store import FINISHED, LOBBY, PLAYING, Player, Room, RoomStore, Settings, normalize_room_code

logger = logging.getLogger(__name__)

PHASE_NEXT_SONG = "next-song"
PHASE_NEXT_ROUND = "next-round"
PHASE_GAME_OVER = "game-over"


class GameEngine:
    def __init__(self, store: RoomStore, gateway: BroadcastGateway, catalog: SongCatalog,
                 registry: Optional[ConnectionRegistry] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.gateway = gateway
        self.catalog = catalog
        self.registry = registry or ConnectionRegistry()
        self._loop = loop
        self._clock = clock

    # ------------------------------------------------------------------
    # Client requests
    # ------------------------------------------------------------------

    def create_room(self, connection_id: str, code: Optional[str], nickname: str,
                    settings: Optional[Settings] = None) -> str:
        """Create a room with the caller as host. Returns the normalized room code."""
        if code is None:
            code = self.store.generate_code()
        code = normalize_room_code(code)
        if not code:
            raise InvalidRoomCode()
        nickname = _clean_nickname(nickname)
        if code in self.store:
            raise DuplicateRoom()
        if len(self.store) >= config.MAX_ROOMS:
            raise TooManyRooms()

        self.leave_room(connection_id)
        room = self.store.create(code, settings or Settings())
        player = Player(connection_id, nickname)
        room.add_player(player)
        room.scores[player.id] = 0
        self.registry.associate(connection_id, room.room_code, player)
        logger.info("Room %s created by '%s' (%s)", room.room_code, nickname, room.settings)

        self._broadcast_members(room)
        return room.room_code

    def join_room(self, connection_id: str, code: str, nickname: str) -> str:
        code = normalize_room_code(code)
        if not code:
            raise InvalidRoomCode()
        nickname = _clean_nickname(nickname)
        room = self.store.get(code)
        if room is None or (room.state == FINISHED and not room.players):
            # an emptied finished room is only waiting to be reaped
            raise RoomNotFound()
        if room.get_player(connection_id):
            return room.room_code
        if room.has_name(nickname):
            raise NameTaken()
        if len(room.players) >= config.MAX_PLAYERS_PER_ROOM:
            raise RoomFull()

        self.leave_room(connection_id)
        player = Player(connection_id, nickname)
        room.add_player(player)
        room.scores[player.id] = 0
        self.registry.associate(connection_id, room.room_code, player)
        logger.info("Player '%s' joined room %s", nickname, room.room_code)

        self.gateway.broadcast(room, "playerJoined", player.to_dict())
        self._broadcast_members(room)
        self._broadcast_leaderboard(room)
        return room.room_code

    def start_game(self, code: str, requester_id: str):
        room = self.store.get(code)
        if room is None:
            return
        if requester_id != room.host_id:
            logger.debug("Ignoring start-game from non-host %s in room %s", requester_id, room.room_code)
            return
        if room.state == PLAYING:
            return

        room.cancel_timers()
        room.scores = {p.id: 0 for p in room.players}
        room.current_round = 0
        room.current_song_index = 0
        room.current_song = None
        room.is_song_active = False
        room.answered_this_song = set()
        room.state = PLAYING
        logger.info("Game started in room %s (%d players)", room.room_code, len(room.players))

        self._broadcast_leaderboard(room)
        self._start_round(room, 1)

    def submit_answer(self, code: str, player_id: str, text: str):
        room = self.store.get(code)
        if room is None or room.state != PLAYING or room.current_song is None:
            return
        player = room.get_player(player_id)
        if player is None or player_id in room.answered_this_song:
            return
        text = text.strip() if isinstance(text, str) else ""
        if not text:
            return

        room.answered_this_song.add(player_id)
        song = room.current_song
        elapsed = self._clock() - room.song_start_time
        correct = scoring.is_correct(text, song.correct_answer)
        points = scoring.score(elapsed) if correct else 0
        if correct:
            room.scores[player_id] = room.scores.get(player_id, 0) + points
        logger.debug("Room %s: '%s' answered %s after %.2fs (+%d)",
                     room.room_code, player.name, "correctly" if correct else "wrong", elapsed, points)

        self.gateway.broadcast(room, "round-result", {
            "playerId": player.id,
            "playerName": player.name,
            "isCorrect": correct,
            "points": points,
        })
        self._broadcast_leaderboard(room)

        if correct:
            room.cancel_song_timer()
            self.end_song(room, "correct")

    def leave_room(self, connection_id: str):
        """Explicit leave: same room cleanup as a disconnect, connection stays open."""
        association = self.registry.dissociate(connection_id)
        if association:
            self._remove_player(*association)

    def disconnect(self, connection_id: str):
        association = self.registry.on_disconnect(connection_id)
        if association:
            self._remove_player(*association)

    # ------------------------------------------------------------------
    # Round / song sequencing
    # ------------------------------------------------------------------

    def _start_round(self, room: Room, round_number: int):
        room.current_round = round_number
        room.current_song_index = 1
        room.answered_this_song = set()
        logger.info("Room %s: round %d/%d", room.room_code, round_number, room.settings.total_rounds)
        self._start_song(room)

    def _start_song(self, room: Room):
        if room.is_song_active:
            logger.warning("Room %s: song already active, not starting another", room.room_code)
            return
        room.cancel_song_timer()
        room.cancel_countdown_timer()

        song = self.catalog.pick()
        room.current_song = song
        room.answered_this_song = set()
        now = self._clock()
        room.song_start_time = now + config.SONG_START_BUFFER_SECONDS
        room.song_timer = self._schedule(room.settings.time_per_song, self._on_song_timeout, room)
        room.is_song_active = True
        logger.info("Room %s: round %d song %d/%d -> %s",
                    room.room_code, room.current_round, room.current_song_index,
                    config.SONGS_PER_ROUND, song.id)

        self.gateway.broadcast(room, "new-round", {
            "round": room.current_round,
            "totalRounds": room.settings.total_rounds,
            "songNumber": room.current_song_index,
            "songsPerRound": config.SONGS_PER_ROUND,
            "audioUrl": song.audio_url,
            "startTime": int(round(room.song_start_time * 1000)),
            # server deadline: the timeout is armed from now, not from startTime
            "endTime": int(round((now + room.settings.time_per_song) * 1000)),
            "timer": room.settings.time_per_song,
        })

    def _on_song_timeout(self, room: Room):
        room.song_timer = None
        self.end_song(room, "timeout")

    def end_song(self, room: Room, reason: str):
        """Reveal the answer and start the countdown. Safe to call more than once."""
        if not room.is_song_active:
            return
        room.cancel_song_timer()
        room.is_song_active = False
        song = room.current_song
        room.current_song = None
        logger.info("Room %s: song %d ended (%s)", room.room_code, room.current_song_index, reason)

        self.gateway.broadcast(room, "round-end", {
            "correctAnswer": song.correct_answer,
            "title": song.title,
            "artist": song.artist,
            "round": room.current_round,
            "songNumber": room.current_song_index,
            "songsPerRound": config.SONGS_PER_ROUND,
            "reason": reason,
        })
        self._broadcast_leaderboard(room)
        self._start_countdown(room)

    def _next_phase(self, room: Room) -> str:
        if room.current_song_index < config.SONGS_PER_ROUND:
            return PHASE_NEXT_SONG
        if room.current_round < room.settings.total_rounds:
            return PHASE_NEXT_ROUND
        return PHASE_GAME_OVER

    def _start_countdown(self, room: Room):
        room.cancel_countdown_timer()
        room.countdown_remaining = config.COUNTDOWN_SECONDS
        self._emit_countdown(room)
        room.countdown_timer = self._schedule(1, self._on_countdown_tick, room)

    def _emit_countdown(self, room: Room):
        self.gateway.broadcast(room, "countdown", {
            "secondsLeft": room.countdown_remaining,
            "phase": self._next_phase(room),
        })

    def _on_countdown_tick(self, room: Room):
        room.countdown_timer = None
        room.countdown_remaining -= 1
        if room.countdown_remaining > 0:
            self._emit_countdown(room)
            room.countdown_timer = self._schedule(1, self._on_countdown_tick, room)
            return
        self._advance(room)

    def _advance(self, room: Room):
        if room.state != PLAYING:
            return
        phase = self._next_phase(room)
        if phase == PHASE_NEXT_SONG:
            room.current_song_index += 1
            self._start_song(room)
        elif phase == PHASE_NEXT_ROUND:
            self._start_round(room, room.current_round + 1)
        else:
            self._end_game(room)

    def _end_game(self, room: Room):
        room.cancel_song_timer()
        room.cancel_countdown_timer()
        room.state = FINISHED
        room.current_song = None
        room.is_song_active = False
        logger.info("Game over in room %s", room.room_code)

        self.gateway.broadcast(room, "game-over", {"leaderboard": leaderboard.project(room)})
        room.cancel_cleanup_timer()
        room.cleanup_timer = self._schedule(config.FINISHED_ROOM_TTL_SECONDS, self._on_cleanup, room)

    def _on_cleanup(self, room: Room):
        room.cleanup_timer = None
        if room.state != FINISHED:
            return
        self.gateway.broadcast(room, "roomClosed", {"roomCode": room.room_code})
        self.store.delete(room.room_code)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _schedule(self, delay: float, callback: Callable[[Room], None], room: Room):
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, self._run_timer, callback, room)

    def _run_timer(self, callback: Callable[[Room], None], room: Room):
        if self.store.get(room.room_code) is not room:
            return
        try:
            callback(room)
        except Exception:
            logger.exception("Timer callback failed in room %s", room.room_code)

    def _remove_player(self, room_code: str, player_id: str):
        room = self.store.get(room_code)
        if room is None:
            return
        player = room.remove_player(player_id)
        if player is None:
            return
        logger.info("Player '%s' left room %s", player.name, room.room_code)

        if not room.players:
            if room.state == FINISHED:
                # Kept until the post-game cleanup timer fires
                return
            self.store.delete(room.room_code)
            return

        self._broadcast_members(room)
        if room.state != LOBBY:
            self._broadcast_leaderboard(room)

    def _broadcast_members(self, room: Room):
        self.gateway.broadcast(room, "roomUpdated", {
            "roomCode": room.room_code,
            "players": room.players_payload(),
        })

    def _broadcast_leaderboard(self, room: Room):
        self.gateway.broadcast(room, "leaderboard-update", {"leaderboard": leaderboard.project(room)})

    def snapshot(self, room: Room) -> dict:
        return {
            "roomCode": room.room_code,
            "state": room.state,
            "settings": room.settings.to_dict(),
            "hostId": room.host_id,
            "players": room.players_payload(),
            "round": room.current_round,
            "songNumber": room.current_song_index,
            "songsPerRound": config.SONGS_PER_ROUND,
            "isSongActive": room.is_song_active,
            "leaderboard": leaderboard.project(room),
        }

    def shutdown(self):
        self.store.clear()


def _clean_nickname(nickname) -> str:
    nickname = nickname.strip() if isinstance(nickname, str) else ""
    if not nickname or len(nickname) > config.MAX_NICKNAME_LENGTH:
        raise InvalidNickname(f"Nickname must be 1-{config.MAX_NICKNAME_LENGTH} characters")
    return nickname
