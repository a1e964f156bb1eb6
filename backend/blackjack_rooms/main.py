import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from blackjack_rooms.core.config import settings
from blackjack_rooms.core.limiter import limiter
from blackjack_rooms.core.logging_config import configure_logging
from blackjack_rooms.routes import rooms, ws
from blackjack_rooms.routes.deps import get_gateway
from blackjack_rooms.services.gateway import ConnectionGateway

SERVICE_NAME = "blackjack-rooms"
VERSION = "1.0.0"

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.gateway = ConnectionGateway()
    logger.info(
        f"{SERVICE_NAME} {VERSION} up ({settings.ENVIRONMENT}), "
        f"rooms seat up to {settings.MAX_PLAYERS_PER_ROOM}"
    )
    yield
    await app.state.gateway.shutdown()
    logger.info(f"{SERVICE_NAME} stopped, all rooms closed")


app = FastAPI(
    title="Blackjack Rooms Server",
    description="Multiplayer Blackjack tables played over a WebSocket",
    version=VERSION,
    lifespan=lifespan,
)

# Throttling applies to the /rooms endpoints only
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    record = logging.LogRecord(
        name="http",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=f"{request.method} {request.url.path} -> {response.status_code}",
        args=(),
        exc_info=None,
    )
    record.request_path = request.url.path
    record.status_code = response.status_code
    record.response_time = f"{elapsed:.3f}s"
    logger.handle(record)
    return response


app.include_router(rooms.router, prefix="/rooms", tags=["Rooms"])
app.include_router(ws.router, tags=["Game"])


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/ready")
async def readiness_check(gateway: ConnectionGateway = Depends(get_gateway)):
    """Ready while the gateway accepts players; 503 once shutdown has begun."""
    if gateway.closed:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready"},
        )
    return {
        "status": "ready",
        "rooms": len(gateway.registry),
        "connections": gateway.connection_count,
    }


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
