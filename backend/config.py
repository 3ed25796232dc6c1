"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Storage Limits ---
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "50"))
MAX_PLAYERS_PER_ROOM = 100

# --- Room codes ---
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
MAX_ROOM_CODE_LENGTH = 12
MAX_ROOM_CODE_ATTEMPTS = 10

# --- Players ---
MAX_NICKNAME_LENGTH = 20
MAX_ANSWER_LENGTH = 200
MAX_CATEGORY_LENGTH = 30

# --- Game ---
SONGS_PER_ROUND = 5
DEFAULT_TOTAL_ROUNDS = 5
MIN_TOTAL_ROUNDS = 1
MAX_TOTAL_ROUNDS = 20
DEFAULT_TIME_PER_SONG = 15
MIN_TIME_PER_SONG = 5
MAX_TIME_PER_SONG = 60
DEFAULT_CATEGORY = "Mixed"
SONG_START_BUFFER_SECONDS = 2  # lead time clients get to buffer audio
COUNTDOWN_SECONDS = 3
FINISHED_ROOM_TTL_SECONDS = int(os.getenv("FINISHED_ROOM_TTL_SECONDS", "60"))

# --- Scoring ---
MAX_SCORE = 1000
DECAY_RATE = 50  # points lost per second
FLOOR_SCORE = 100

# --- Song catalog ---
SONG_CATALOG_PATH = os.getenv("SONG_CATALOG_PATH", os.path.join(BASE_DIR, "data", "songs.json"))
AUDIO_BASE_URL = os.getenv("AUDIO_BASE_URL", "/audio/")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
