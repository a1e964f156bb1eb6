"""
Errors a client request can be rejected with.

Every error carries a stable ``code`` (sent to the client alongside the
human message) and is reported only to the connection that caused it.
Operations raise these before mutating anything.
"""

from typing import Optional


class GameError(Exception):
    code = "GameError"
    default_message = "Request rejected"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_message(self) -> dict:
        return {"action": "error", "code": self.code, "message": self.message}


class RoomNotFound(GameError):
    code = "RoomNotFound"
    default_message = "Room does not exist"


class RoomAlreadyExists(GameError):
    code = "RoomAlreadyExists"
    default_message = "Room already exists"


class RoomFull(GameError):
    code = "RoomFull"
    default_message = "Room is full"


class AlreadyJoined(GameError):
    code = "AlreadyJoined"
    default_message = "You are already in a room"


class NotInRoom(GameError):
    code = "NotInRoom"
    default_message = "You are not in this room"


class GameInProgress(GameError):
    code = "GameInProgress"
    default_message = "Game already in progress"


class NotYourTurn(GameError):
    code = "NotYourTurn"
    default_message = "It is not your turn"


class AlreadyActedThisTurn(GameError):
    code = "AlreadyActedThisTurn"
    default_message = "You have already stood or bust"


class InsufficientPlayers(GameError):
    code = "InsufficientPlayers"
    default_message = "Not enough players to start"


class InvalidName(GameError):
    code = "InvalidName"
    default_message = "Please provide a valid name"


class NameCooldownActive(GameError):
    code = "NameCooldownActive"

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Name was changed recently, try again in {remaining_seconds} seconds"
        )


class MalformedMessage(GameError):
    code = "MalformedMessage"
    default_message = "Invalid message format"
