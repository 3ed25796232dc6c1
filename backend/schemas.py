"""Validation models for inbound WebSocket requests."""
from typing import Optional
import re

from pydantic import BaseModel, Field, field_validator

import config
from room_store import Settings, normalize_room_code

_TAG_RE = re.compile(r'<[^>]+>')
_CONTROL_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters."""
    text = _TAG_RE.sub('', text)
    text = _CONTROL_RE.sub('', text)
    return text.strip()


def _validate_code(v: str) -> str:
    v = normalize_room_code(v)
    if not v:
        raise ValueError('Room code is required')
    if len(v) > config.MAX_ROOM_CODE_LENGTH or not v.isalnum() or not v.isascii():
        raise ValueError(f'Room code must be 1-{config.MAX_ROOM_CODE_LENGTH} letters or digits')
    return v


def _validate_nickname(v: str) -> str:
    v = sanitize_text(v)
    if not v or len(v) > config.MAX_NICKNAME_LENGTH:
        raise ValueError(f'Nickname must be 1-{config.MAX_NICKNAME_LENGTH} characters')
    return v


class RoomOptions(BaseModel):
    category: str = config.DEFAULT_CATEGORY
    rounds: int = config.DEFAULT_TOTAL_ROUNDS
    timePerSong: int = config.DEFAULT_TIME_PER_SONG

    @field_validator('category')
    @classmethod
    def validate_category(cls, v: str) -> str:
        v = sanitize_text(v)
        if not v or len(v) > config.MAX_CATEGORY_LENGTH:
            raise ValueError(f'Category must be 1-{config.MAX_CATEGORY_LENGTH} characters')
        return v

    @field_validator('rounds')
    @classmethod
    def validate_rounds(cls, v: int) -> int:
        if v < config.MIN_TOTAL_ROUNDS or v > config.MAX_TOTAL_ROUNDS:
            raise ValueError(f'Rounds must be between {config.MIN_TOTAL_ROUNDS} and {config.MAX_TOTAL_ROUNDS}')
        return v

    @field_validator('timePerSong')
    @classmethod
    def validate_time_per_song(cls, v: int) -> int:
        if v < config.MIN_TIME_PER_SONG or v > config.MAX_TIME_PER_SONG:
            raise ValueError(
                f'Time per song must be between {config.MIN_TIME_PER_SONG} and {config.MAX_TIME_PER_SONG} seconds')
        return v

    def to_settings(self) -> Settings:
        return Settings(total_rounds=self.rounds, time_per_song=self.timePerSong, category=self.category)


class CreateRoomRequest(BaseModel):
    code: Optional[str] = None  # generated when omitted
    nickname: str
    options: RoomOptions = Field(default_factory=RoomOptions)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_code(v)

    @field_validator('nickname')
    @classmethod
    def validate_nickname(cls, v: str) -> str:
        return _validate_nickname(v)


class JoinRoomRequest(BaseModel):
    code: str
    nickname: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _validate_code(v)

    @field_validator('nickname')
    @classmethod
    def validate_nickname(cls, v: str) -> str:
        return _validate_nickname(v)


class StartGameRequest(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        return normalize_room_code(v)


class SubmitAnswerRequest(BaseModel):
    code: str
    answer: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        return normalize_room_code(v)

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v: str) -> str:
        return sanitize_text(v)[:config.MAX_ANSWER_LENGTH]


def first_error_message(exc) -> str:
    """Client-facing text for a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    message = errors[0].get("msg", "Invalid request")
    # pydantic prefixes messages raised from validators
    return message.removeprefix("Value error, ")
