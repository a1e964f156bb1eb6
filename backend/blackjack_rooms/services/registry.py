import logging
import random
from typing import Callable, Dict, List, Optional, Tuple

from blackjack_rooms.schemas.room import RoomConfig
from blackjack_rooms.services.deck import Deck
from blackjack_rooms.services.errors import RoomAlreadyExists, RoomNotFound
from blackjack_rooms.services.participants import Player
from blackjack_rooms.services.room import Room, RoomState
from blackjack_rooms.services.timers import Scheduler

logger = logging.getLogger(__name__)

SchedulerFactory = Callable[[str], Scheduler]


def generate_room_id() -> str:
    return f"R_{random.randrange(100000):05d}"


class RoomRegistry:
    """
    Owns every live room, keyed by room id.

    Rooms are created on demand and dropped as soon as their last player
    leaves. All methods are synchronous, so on a single event loop each
    call is atomic with respect to other rooms' setup and teardown.
    """

    def __init__(
        self,
        scheduler_factory: SchedulerFactory,
        dealer_delay: float = 0.0,
        deck_factory: Callable[[], Deck] = Deck,
        id_factory: Callable[[], str] = generate_room_id,
    ):
        self._rooms: Dict[str, Room] = {}
        self._scheduler_factory = scheduler_factory
        self._dealer_delay = dealer_delay
        self._deck_factory = deck_factory
        self._id_factory = id_factory

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def find(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def get(self, room_id: Optional[str]) -> Room:
        room = self.find(room_id)
        if room is None:
            raise RoomNotFound()
        return room

    def _new_room_id(self) -> str:
        room_id = self._id_factory()
        while room_id in self._rooms:
            room_id = self._id_factory()
        return room_id

    def create_room(
        self, config: Optional[RoomConfig] = None, room_id: Optional[str] = None
    ) -> Room:
        if room_id is not None and room_id in self._rooms:
            raise RoomAlreadyExists(f"Room {room_id} already exists")

        room_id = room_id or self._new_room_id()
        room = Room(
            room_id,
            config or RoomConfig(),
            self._scheduler_factory(room_id),
            deck=self._deck_factory(),
            dealer_delay=self._dealer_delay,
        )
        self._rooms[room_id] = room
        logger.info(f"Room {room_id} created")
        return room

    def join_room(self, room_id: str, player_id: str, name: str) -> Player:
        return self.get(room_id).add_player(player_id, name)

    def leave_room(
        self, room_id: str, player_id: str, disconnected: bool = False
    ) -> Player:
        room = self.get(room_id)
        player = room.remove_player(player_id, disconnected=disconnected)
        if room.is_empty():
            self.destroy_room(room_id)
        return player

    def find_open_room(self) -> Optional[Room]:
        for room in self._rooms.values():
            if room.state == RoomState.WAITING and room.has_open_seat():
                return room
        return None

    def open_room(self) -> Room:
        """First waiting room with a free seat, or a new default room."""
        return self.find_open_room() or self.create_room()

    def join_any(self, player_id: str, name: str) -> Tuple[Room, Player]:
        room = self.open_room()
        return room, room.add_player(player_id, name)

    def destroy_room(self, room_id: str):
        room = self._rooms.pop(room_id, None)
        if room is None:
            return
        room.close()
        logger.info(f"Room {room_id} destroyed")

    def close_all(self):
        for room_id in list(self._rooms):
            self.destroy_room(room_id)
