import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from blackjack_rooms.routes.deps import get_gateway
from blackjack_rooms.services.gateway import ConnectionGateway

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
@router.websocket("/")
async def game_socket(
    websocket: WebSocket, gateway: ConnectionGateway = Depends(get_gateway)
):
    """
    One socket per client. Frames are JSON objects with an `action` key;
    replies and room broadcasts come back on the same socket.
    """
    await websocket.accept()
    connection = gateway.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_text(connection, raw)
    except WebSocketDisconnect as exc:
        logger.info(f"Client {connection.id} closed socket (code {exc.code})")
    finally:
        await gateway.disconnect(connection)
