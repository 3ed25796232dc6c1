from typing import List

from room_store import Room


def project(room: Room) -> List[dict]:
    """Standings for `room`, highest score first.

    sorted() is stable, so equal scores keep join order. Always computed
    fresh from the room's players and scores.
    """
    ranked = sorted(room.players, key=lambda p: room.scores.get(p.id, 0), reverse=True)
    return [{"id": p.id, "name": p.name, "score": room.scores.get(p.id, 0)} for p in ranked]
