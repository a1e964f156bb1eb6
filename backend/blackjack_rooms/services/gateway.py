import logging
import uuid
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from blackjack_rooms.core.config import settings
from blackjack_rooms.schemas.messages import ClientMessage
from blackjack_rooms.schemas.room import RoomConfig
from blackjack_rooms.services.deck import Deck
from blackjack_rooms.services.errors import (
    AlreadyJoined,
    GameError,
    MalformedMessage,
    NotInRoom,
    RoomNotFound,
)
from blackjack_rooms.services.names import NameCooldowns, clean_name
from blackjack_rooms.services.participants import default_player_name
from blackjack_rooms.services.registry import RoomRegistry
from blackjack_rooms.services.room import Room
from blackjack_rooms.services.timers import AsyncioScheduler, TimerCallback

logger = logging.getLogger(__name__)


class Connection:
    """One live client socket and the seat it is bound to, if any."""

    def __init__(self, websocket: Any, connection_id: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.player_id: Optional[str] = None
        self.player_name: Optional[str] = None
        self.room_id: Optional[str] = None

    def bind(self, player_id: str, player_name: str, room_id: str):
        self.player_id = player_id
        self.player_name = player_name
        self.room_id = room_id

    def __repr__(self):
        return f"Connection({self.id}, player={self.player_id}, room={self.room_id})"


class ConnectionGateway:
    """
    Routes client frames to the registry and rooms, and delivers each
    room's queued notices to the connections seated in it.

    Every room operation runs under that room's lock and is followed by
    a flush of its outbox before the lock is released, so player actions
    and timer expiries for one room are applied and announced in order.
    Errors go back to the requesting connection only.
    """

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        name_cooldowns: Optional[NameCooldowns] = None,
        dealer_delay: Optional[float] = None,
        deck_factory: Callable[[], Deck] = Deck,
    ):
        if dealer_delay is None:
            dealer_delay = settings.DEALER_DRAW_DELAY_SECONDS
        self.registry = registry or RoomRegistry(
            scheduler_factory=self._scheduler_for,
            dealer_delay=dealer_delay,
            deck_factory=deck_factory,
        )
        self.name_cooldowns = name_cooldowns or NameCooldowns(
            settings.NAME_UPDATE_COOLDOWN_SECONDS
        )
        self._connections: Dict[str, Connection] = {}
        self.closed = False
        self._handlers: Dict[str, Callable[[Connection, ClientMessage], Awaitable[None]]] = {
            "joinGame": self._join_game,
            "createRoom": self._create_room,
            "joinRoom": self._join_room,
            "leaveRoom": self._leave_room,
            "playerReady": self._player_ready,
            "startGame": self._start_game,
            "playerHit": self._player_hit,
            "playerStand": self._player_stand,
            "updatePlayerName": self._update_player_name,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connect(self, websocket: Any, connection_id: Optional[str] = None) -> Connection:
        connection = Connection(websocket, connection_id)
        self._connections[connection.id] = connection
        logger.info("Client connected", extra={"connection_id": connection.id})
        return connection

    async def disconnect(self, connection: Connection):
        """A dropped socket is an implicit leave for whatever seat it held."""
        self._connections.pop(connection.id, None)
        logger.info(
            "Client disconnected",
            extra={"connection_id": connection.id, "room_id": connection.room_id},
        )

        room_id, player_id = connection.room_id, connection.player_id
        if room_id is None or player_id is None:
            return
        connection.room_id = None
        try:
            async with self._room_session(room_id) as room:
                self.registry.leave_room(room.id, player_id, disconnected=True)
        except GameError as exc:
            logger.info(f"Disconnect cleanup for {connection.id} skipped: {exc.message}")

    async def shutdown(self):
        self.closed = True
        self.registry.close_all()
        self._connections.clear()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_text(self, connection: Connection, raw: str):
        """Parse one JSON frame and run its action."""
        try:
            message = ClientMessage.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Client {connection.id} sent a malformed frame")
            await self._send(connection, MalformedMessage().to_message())
            return

        try:
            handler = self._handlers.get(message.action)
            if handler is None:
                logger.warning(f"Unknown action from {connection.id}: {message.action}")
                raise MalformedMessage(f"Unknown action: {message.action}")
            await handler(connection, message)
        except GameError as exc:
            logger.info(f"Rejected request from {connection.id}: {exc.code} {exc.message}")
            await self._send(connection, exc.to_message())
        except Exception:
            logger.error(f"Failed to handle message from {connection.id}", exc_info=True)
            await self._send(
                connection,
                {"action": "error", "code": "InternalError", "message": "Internal server error"},
            )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, connection: Connection, message: dict):
        try:
            await connection.websocket.send_json(message)
        except Exception:
            logger.error(f"Failed to send to client {connection.id}", exc_info=True)

    async def _flush(self, room: Room):
        for notice in room.drain():
            for connection in list(self._connections.values()):
                if connection.room_id != room.id:
                    continue
                if notice.recipient is not None and connection.player_id != notice.recipient:
                    continue
                if notice.exclude is not None and connection.player_id == notice.exclude:
                    continue
                await self._send(connection, notice.message)

    @asynccontextmanager
    async def _room_session(self, room_id: Optional[str]):
        room = self.registry.get(room_id)
        async with room.lock:
            # The room may have been torn down while we waited for the lock
            if self.registry.find(room_id) is not room:
                raise RoomNotFound()
            yield room
            await self._flush(room)

    def _scheduler_for(self, room_id: str) -> AsyncioScheduler:
        return AsyncioScheduler(partial(self._run_timer, room_id))

    async def _run_timer(self, room_id: str, callback: TimerCallback):
        room = self.registry.find(room_id)
        if room is None:
            return
        async with room.lock:
            if self.registry.find(room_id) is not room:
                return
            callback()
            await self._flush(room)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _identity(connection: Connection, message: ClientMessage):
        player_id = connection.player_id or message.player_id or connection.id
        name = (message.player_name or "").strip() or default_player_name(player_id)
        return player_id, name

    @staticmethod
    def _ensure_unseated(connection: Connection):
        if connection.room_id is not None:
            raise AlreadyJoined()

    @staticmethod
    def _seated_room_id(connection: Connection, message: ClientMessage) -> str:
        if connection.room_id is None or connection.player_id is None:
            raise NotInRoom("You are not in any room")
        if message.room_id is not None and message.room_id != connection.room_id:
            raise NotInRoom()
        return connection.room_id

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _join_game(self, connection: Connection, message: ClientMessage):
        """Seat the player in the first open room, retrying if it fills or starts first."""
        self._ensure_unseated(connection)
        player_id, name = self._identity(connection, message)
        while True:
            candidate = self.registry.open_room()
            try:
                async with self._room_session(candidate.id) as room:
                    # A hand may have started while we waited for the lock
                    if self.registry.find_open_room() is not room:
                        if room.is_empty():
                            self.registry.destroy_room(room.id)
                        continue
                    room, _ = self.registry.join_any(player_id, name)
                    connection.bind(player_id, name, room.id)
                    await self._send(
                        connection,
                        {
                            "action": "joinedGame",
                            "roomId": room.id,
                            "playerId": player_id,
                            "playerName": name,
                            "players": room.players_dicts(),
                            "message": f"Joined game in room {room.id}",
                        },
                    )
                    return
            except RoomNotFound:
                continue

    async def _create_room(self, connection: Connection, message: ClientMessage):
        self._ensure_unseated(connection)
        player_id, name = self._identity(connection, message)
        try:
            config = RoomConfig.model_validate(message.room_config or {})
        except ValidationError as exc:
            raise MalformedMessage(f"Invalid room config: {exc.errors()[0]['msg']}")

        room = self.registry.create_room(config, room_id=message.room_id)
        async with self._room_session(room.id) as room:
            self.registry.join_room(room.id, player_id, name)
            connection.bind(player_id, name, room.id)
            await self._send(
                connection,
                {
                    "action": "roomCreated",
                    "roomId": room.id,
                    "roomConfig": room.config.to_wire(),
                    "players": room.players_dicts(),
                    "message": f"Room {room.id} created",
                },
            )

    async def _join_room(self, connection: Connection, message: ClientMessage):
        self._ensure_unseated(connection)
        if not message.room_id:
            raise MalformedMessage("roomId is required")
        player_id, name = self._identity(connection, message)

        async with self._room_session(message.room_id) as room:
            self.registry.join_room(room.id, player_id, name)
            connection.bind(player_id, name, room.id)
            await self._send(
                connection,
                {
                    "action": "roomJoined",
                    "roomId": room.id,
                    "players": room.players_dicts(),
                    "roomState": room.state.value,
                    "message": f"Joined room {room.id}",
                },
            )

    async def _leave_room(self, connection: Connection, message: ClientMessage):
        room_id = self._seated_room_id(connection, message)
        player_id = connection.player_id

        async with self._room_session(room_id) as room:
            self.registry.leave_room(room.id, player_id)
            connection.room_id = None
            await self._send(
                connection,
                {
                    "action": "roomLeft",
                    "roomId": room_id,
                    "playerId": player_id,
                    "message": f"Left room {room_id}",
                },
            )

    async def _player_ready(self, connection: Connection, message: ClientMessage):
        room_id = self._seated_room_id(connection, message)
        async with self._room_session(room_id) as room:
            room.mark_ready(connection.player_id)

    async def _start_game(self, connection: Connection, message: ClientMessage):
        room_id = self._seated_room_id(connection, message)
        async with self._room_session(room_id) as room:
            room.start_game(connection.player_id)

    async def _player_hit(self, connection: Connection, message: ClientMessage):
        room_id = self._seated_room_id(connection, message)
        async with self._room_session(room_id) as room:
            room.hit(connection.player_id)

    async def _player_stand(self, connection: Connection, message: ClientMessage):
        room_id = self._seated_room_id(connection, message)
        async with self._room_session(room_id) as room:
            room.stand(connection.player_id)

    async def _update_player_name(self, connection: Connection, message: ClientMessage):
        player_id = connection.player_id or message.player_id or connection.id
        try:
            new_name = clean_name(message.name or message.player_name)
            self.name_cooldowns.check(player_id)

            old_name = connection.player_name
            if connection.room_id is not None:
                async with self._room_session(connection.room_id) as room:
                    old_name = room.rename_player(player_id, new_name)
                    self.name_cooldowns.record(player_id)
            else:
                self.name_cooldowns.record(player_id)
        except GameError as exc:
            failure = {
                "action": "nameUpdateFailed",
                "playerId": player_id,
                "code": exc.code,
                "message": exc.message,
            }
            if hasattr(exc, "remaining_seconds"):
                failure["cooldownRemaining"] = exc.remaining_seconds
            await self._send(connection, failure)
            return

        connection.player_name = new_name
        logger.info(f"Player {player_id} renamed from {old_name!r} to {new_name!r}")
        await self._send(
            connection,
            {
                "action": "nameUpdateConfirmed",
                "playerId": player_id,
                "oldName": old_name,
                "newName": new_name,
                "cooldownSeconds": self.name_cooldowns.cooldown_seconds,
                "message": f"Name updated to {new_name}",
            },
        )
