import asyncio
from typing import Optional

import messages
from broadcast import BroadcastEngine
from constants import (
    CONNECTION_TIMEOUT_SECONDS,
    GLOBAL_MEETING_ID,
    HEARTBEAT_INTERVAL_SECONDS,
    SEND_TIMEOUT_SECONDS,
    SHUTDOWN_CLOSE_CODE,
    TIMEOUT_CHECK_INTERVAL_SECONDS,
    TIMEOUT_CLOSE_CODE,
)
from directory import MeetingDirectory
from liveness import LivenessMonitor
from logging_config import get_logger
from message_router import MessageRouter
from registry import Connection, ConnectionRegistry
from relay import SignalingRelay

logger = get_logger(__name__)


class SignalingHub:
    """Process-wide owner of the registry, directory and liveness watch.

    Accept, inbound message, teardown, eviction and shutdown each run start to
    finish under one lock, so no two handlers ever interleave their mutations
    or fan-out.
    """

    def __init__(
        self,
        ice_servers: list,
        server_info: dict = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        check_interval: float = TIMEOUT_CHECK_INTERVAL_SECONDS,
        timeout: float = CONNECTION_TIMEOUT_SECONDS,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
    ):
        self.registry = ConnectionRegistry()
        self.directory = MeetingDirectory(self.registry)
        self.broadcast = BroadcastEngine(self.registry, send_timeout=send_timeout)
        self.relay = SignalingRelay(self.broadcast)
        self.router = MessageRouter(
            self.registry, self.directory, self.broadcast, self.relay,
            ice_servers=ice_servers, server_info=server_info,
        )
        self.liveness = LivenessMonitor(
            self.registry, self.evict,
            on_probe=self.heartbeat,
            heartbeat_interval=heartbeat_interval,
            check_interval=check_interval,
            timeout=timeout,
            send_timeout=send_timeout,
        )
        self._lock = asyncio.Lock()

    def start(self):
        # A fresh lock per serving loop; asyncio primitives bind to the loop that first waits on them
        self._lock = asyncio.Lock()
        self.registry.clear()
        self.directory.clear()
        logger.info("Signaling hub started")

    async def connect(self, connection: Connection, device_id: str = None, device_name: str = None) -> str:
        async with self._lock:
            display_id = self.registry.register(connection, device_id=device_id, device_name=device_name)
            logger.info(f"New client connected: {display_id} from {connection.remote_address}")
            await self.router.send_welcome(connection)
            await self.broadcast.broadcast_global(
                messages.system(GLOBAL_MEETING_ID, "USER_CONNECTED", display_id), connection
            )
            self.liveness.watch(connection)
            return display_id

    async def route(self, connection: Connection, raw: str):
        async with self._lock:
            await self.router.route(connection, raw)

    async def disconnect(self, connection: Connection, reason: str = "closed"):
        async with self._lock:
            await self._teardown(connection, reason)

    async def evict(self, connection: Connection):
        async with self._lock:
            if connection not in self.registry:
                return
            try:
                await self._bounded_close(connection, TIMEOUT_CLOSE_CODE, "Connection timed out")
            except Exception as e:
                logger.debug(f"Error closing timed out connection: {e}")
            await self._teardown(connection, "timeout")

    async def heartbeat(self, connection: Connection):
        # Same lock as fan-out, so a probe never interleaves with another write on the socket
        async with self._lock:
            if connection in self.registry:
                await self.liveness.probe(connection)

    async def shutdown(self):
        async with self._lock:
            logger.info("Stopping signaling hub...")
            self.liveness.unwatch_all()
            await self.broadcast.broadcast_global(
                messages.system(GLOBAL_MEETING_ID, "SERVER_SHUTDOWN", "Server is shutting down")
            )
            for connection, _ in self.registry.all():
                try:
                    await self._bounded_close(connection, SHUTDOWN_CLOSE_CODE, "Server shutting down")
                except Exception as e:
                    logger.debug(f"Error closing connection during shutdown: {e}")
            self.registry.clear()
            self.directory.clear()
            logger.info("Signaling hub stopped")

    async def _bounded_close(self, connection: Connection, code: int, reason: str):
        await asyncio.wait_for(connection.close(code=code, reason=reason), self.broadcast.send_timeout)

    async def _teardown(self, connection: Connection, reason: str):
        info = self.registry.get(connection)
        if not info:
            return
        self.liveness.unwatch(connection)
        await self.router.leave_current_meeting(connection, info)
        self.registry.unregister(connection)
        await self.broadcast.broadcast_global(messages.system(GLOBAL_MEETING_ID, "USER_DISCONNECTED", info.display_id))
        logger.info(f"Client disconnected: {info.display_id} ({reason})")

    def snapshot(self, meeting_id: Optional[str] = None):
        if meeting_id is None:
            return {"clients": len(self.registry), "meetings": len(self.directory)}
        return self.router.participant_list(meeting_id)["data"]
