from contextlib import asynccontextmanager
from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState
from typing import Optional
import json
import os

import messages
from constants import DOMAIN, PORT, ICE_SERVERS, MAILBOX_BACKEND, MAILBOX_TTL_SECONDS
from hub import SignalingHub
from relay import InMemoryMailbox, Mailbox
from routers.signaling import signaling_router
from routers.status import status_router
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the hub's Connection interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        client = websocket.client
        self.remote_address = f"{client.host}:{client.port}" if client else "unknown"

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: str):
        await self.websocket.send_text(message)

    async def ping(self):
        # ASGI exposes no ping frame; clients answer this with HEARTBEAT_ACK or any message
        await self.websocket.send_text(json.dumps({"type": "HEARTBEAT", "timestamp": messages.now_millis()}))

    async def close(self, code: int = 1000, reason: str = ""):
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self.websocket.close(code=code, reason=reason)


def create_mailbox() -> Mailbox:
    if MAILBOX_BACKEND == "redis":
        from backend import RedisMailbox
        return RedisMailbox(ttl=MAILBOX_TTL_SECONDS)
    return InMemoryMailbox(ttl_seconds=MAILBOX_TTL_SECONDS)


hub = SignalingHub(ice_servers=ICE_SERVERS, server_info={"host": DOMAIN, "port": PORT})
mailbox = create_mailbox()


@asynccontextmanager
async def lifespan(app: FastAPI):
    hub.start()
    yield
    await hub.shutdown()


app = FastAPI(lifespan=lifespan)
app.state.hub = hub
app.state.mailbox = mailbox

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(status_router)
app.include_router(signaling_router)

logger.info(f"FastAPI application initialized (mailbox backend: {MAILBOX_BACKEND})")


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    device_id: Optional[str] = Query(None, alias="deviceId"),
    device_name: Optional[str] = Query(None, alias="deviceName"),
):
    """Signaling channel.

    Query parameters:
    - deviceId: Optional client device identifier
    - deviceName: Optional human readable device name
    """
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    logger.info(f"WebSocket connection accepted from {connection.remote_address}")
    reason = "closed"

    try:
        await hub.connect(connection, device_id=device_id, device_name=device_name)

        message_count = 0
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"WebSocket disconnected normally from {connection.remote_address} (code: {message.get('code')})")
                break
            data = message.get("text")
            if data is None and message.get("bytes") is not None:
                data = message["bytes"].decode("utf-8", errors="replace")
            if data is None:
                continue
            message_count += 1
            logger.debug(f"Received message #{message_count} from {connection.remote_address}")
            await hub.route(connection, data)
    except RuntimeError as e:
        # Raised by receive() once the hub has closed the socket (eviction, shutdown)
        logger.debug(f"WebSocket receive stopped for {connection.remote_address}: {e}")
    except Exception as e:
        reason = "error"
        logger.error(f"WebSocket error for {connection.remote_address}: {e}", exc_info=True)
    finally:
        await hub.disconnect(connection, reason)
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
