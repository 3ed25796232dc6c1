from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from broadcast import BroadcastGateway
from catalog import SongCatalog
from connection_registry import ConnectionRegistry
from game_engine import GameEngine
from room_store import RoomStore
from socket_manager import SocketManager

logger = logging.getLogger(__name__)

# Process-wide singletons, built once at startup
catalog = SongCatalog.load()
room_store = RoomStore()
gateway = BroadcastGateway()
registry = ConnectionRegistry()
engine = GameEngine(room_store, gateway, catalog, registry=registry)
socket_manager = SocketManager(engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting guess-the-clip backend (%d songs)", len(catalog))
    yield
    engine.shutdown()
    logger.info("Shutting down guess-the-clip backend")


app = FastAPI(title="Guess The Clip Backend", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


@app.get("/system/info")
async def get_system_info():
    return {"ip": get_local_ip()}


@app.get("/rooms/{room_code}")
async def get_room(room_code: str):
    room = room_store.get(room_code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return engine.snapshot(room)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await socket_manager.connect(websocket)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    socket_manager.allowed_origins = origins
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        f"http://{local_ip}:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Guess The Clip API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "rooms": len(room_store)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
