"""Read-only song catalog loaded once at startup."""
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin
import json
import logging
import random

from pydantic import BaseModel, field_validator

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Song:
    id: str
    title: str
    artist: str
    audio_url: str
    correct_answer: str  # trimmed, lowercase


class SongEntry(BaseModel):
    id: str
    title: str
    artist: str = ""
    audio: str
    answer: Optional[str] = None

    @field_validator('id', 'title', 'audio')
    @classmethod
    def validate_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('must not be empty')
        return v

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError('answer must not be empty when given')
        return v


def resolve_audio_url(audio: str, base_url: str = "") -> str:
    """Absolute URLs pass through; relative paths are joined onto `base_url`."""
    if "://" in audio or not base_url:
        return audio
    return urljoin(base_url if base_url.endswith("/") else base_url + "/", audio.lstrip("/"))


def _to_song(entry: SongEntry, base_url: str) -> Song:
    answer = entry.answer if entry.answer is not None else entry.title
    return Song(
        id=entry.id,
        title=entry.title,
        artist=entry.artist,
        audio_url=resolve_audio_url(entry.audio, base_url),
        correct_answer=answer.strip().lower(),
    )


class SongCatalog:
    def __init__(self, songs: List[Song], rng: Optional[random.Random] = None):
        if not songs:
            raise ValueError("Song catalog is empty")
        self._songs = tuple(songs)
        self._rng = rng or random.Random()

    def __len__(self):
        return len(self._songs)

    def __iter__(self):
        return iter(self._songs)

    def pick(self) -> Song:
        """Uniform random pick; consecutive picks are independent."""
        return self._rng.choice(self._songs)

    @classmethod
    def from_entries(cls, entries: list, base_url: str = "", rng: Optional[random.Random] = None) -> "SongCatalog":
        songs = [_to_song(SongEntry.model_validate(e), base_url) for e in entries]
        return cls(songs, rng=rng)

    @classmethod
    def load(cls, path: str = config.SONG_CATALOG_PATH, base_url: str = config.AUDIO_BASE_URL) -> "SongCatalog":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        entries = data.get("songs", []) if isinstance(data, dict) else data
        catalog = cls.from_entries(entries, base_url=base_url)
        logger.info("Loaded %d songs from %s", len(catalog), path)
        return catalog
