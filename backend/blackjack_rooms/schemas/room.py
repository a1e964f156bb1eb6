from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional

from blackjack_rooms.core.config import settings


class TimeoutConfig(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    enabled: bool = Field(default_factory=lambda: settings.PLAYER_TIMEOUT_ENABLED)
    duration_seconds: int = Field(
        default_factory=lambda: settings.DEFAULT_PLAYER_TIMEOUT_SECONDS, ge=1
    )


class RoomConfig(BaseModel):
    """
    Per-room rules, fixed when the room is created.
    Any field the client leaves out falls back to the server defaults.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    max_players: int = Field(
        default_factory=lambda: settings.MAX_PLAYERS_PER_ROOM, ge=1, le=6
    )
    countdown_seconds: int = Field(
        default_factory=lambda: settings.DEFAULT_COUNTDOWN_SECONDS, ge=1
    )
    player_timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)
    auto_start: bool = Field(default_factory=lambda: settings.DEFAULT_AUTO_START)
    min_players: int = Field(
        default_factory=lambda: settings.DEFAULT_MIN_PLAYERS, ge=1, le=6
    )

    @model_validator(mode="after")
    def min_not_above_max(self):
        if self.min_players > self.max_players:
            raise ValueError("minPlayers cannot exceed maxPlayers")
        return self

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# HTTP read models
# ---------------------------------------------------------------------------


class CardSchema(BaseModel):
    suit: str
    value: str


class ParticipantState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    hand: List[CardSchema]
    score: int
    is_active: bool
    has_stood: bool
    is_bust: bool
    # Dealer records have no ready flag
    is_ready: Optional[bool] = None


class RoomSnapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room_id: str
    game_phase: str
    players: List[ParticipantState]
    dealer: ParticipantState
    current_player_index: int
    countdown: Optional[int] = None


class RoomSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room_id: str
    room_state: str
    players: int
    max_players: int
    config: RoomConfig
