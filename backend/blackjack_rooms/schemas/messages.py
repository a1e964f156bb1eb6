from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class ClientMessage(BaseModel):
    """
    One inbound frame. Only `action` is mandatory; which of the remaining
    fields matter depends on the action.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str
    player_id: Optional[str] = Field(default=None, alias="playerId")
    player_name: Optional[str] = Field(default=None, alias="playerName")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    name: Optional[str] = None
    room_config: Optional[Dict[str, Any]] = Field(default=None, alias="roomConfig")
