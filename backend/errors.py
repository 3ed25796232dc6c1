"""Errors surfaced to clients as failed acknowledgements.

Unauthorized or stale actions (a non-host starting the game, a second answer
for the same song, a song ending twice) are not errors: the game engine
ignores them silently.
"""


class GameError(Exception):
    """Base class for request failures that leave room state untouched."""

    message = "Request failed"

    def __init__(self, message: str = ""):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(GameError):
    message = "Invalid request"


class InvalidRoomCode(ValidationError):
    message = "Room code is required"


class InvalidNickname(ValidationError):
    message = "Nickname is required"


class NotFoundError(GameError):
    message = "Not found"


class RoomNotFound(NotFoundError):
    message = "Room not found"


class ConflictError(GameError):
    message = "Conflict"


class DuplicateRoom(ConflictError):
    message = "Room code already in use"


class NameTaken(ConflictError):
    message = "Nickname already taken in this room"


class RoomFull(ConflictError):
    message = "Room is full"


class TooManyRooms(ConflictError):
    message = "Too many active rooms. Please try again later."
