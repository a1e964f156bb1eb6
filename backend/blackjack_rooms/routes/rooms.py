import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from blackjack_rooms.core.limiter import ROOMS_LIMIT, limiter
from blackjack_rooms.routes.deps import get_gateway
from blackjack_rooms.schemas.room import RoomSnapshot, RoomSummary
from blackjack_rooms.services.gateway import ConnectionGateway

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[RoomSummary])
@limiter.limit(ROOMS_LIMIT)
def list_rooms(request: Request, gateway: ConnectionGateway = Depends(get_gateway)):
    """All live rooms with their state and seat usage."""
    return [RoomSummary.model_validate(room.summary()) for room in gateway.registry.rooms()]


@router.get("/{room_id}", response_model=RoomSnapshot)
@limiter.limit(ROOMS_LIMIT)
def get_room(
    room_id: str,
    request: Request,
    gateway: ConnectionGateway = Depends(get_gateway),
):
    """Public table view of one room (dealer hole card hidden during play)."""
    room = gateway.registry.find(room_id)
    if room is None:
        logger.info(f"Lookup for unknown room {room_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Room not found",
        )
    return RoomSnapshot.model_validate(room.snapshot())
