import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

from constants import (
    CONNECTION_TIMEOUT_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    SEND_TIMEOUT_SECONDS,
    TIMEOUT_CHECK_INTERVAL_SECONDS,
)
from logging_config import get_logger
from registry import Connection, ConnectionRegistry

logger = get_logger(__name__)


class LivenessMonitor:
    """Per-connection heartbeat and idle-timeout watch.

    Each watched connection gets one task that wakes every ``check_interval``,
    probes the transport every ``heartbeat_interval`` and hands the connection
    to ``on_timeout`` once ``now - last_activity_at`` exceeds ``timeout``.
    Sending a probe never counts as activity; only inbound traffic does.
    Probes go through ``on_probe`` when given, so the owner can serialize them
    with its other writes.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        on_timeout: Callable[[Connection], Awaitable[None]],
        on_probe: Optional[Callable[[Connection], Awaitable[None]]] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        check_interval: float = TIMEOUT_CHECK_INTERVAL_SECONDS,
        timeout: float = CONNECTION_TIMEOUT_SECONDS,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        clock=time.monotonic,
    ):
        self._registry = registry
        self._on_timeout = on_timeout
        self._on_probe = on_probe or self.probe
        self.send_timeout = send_timeout
        self.heartbeat_interval = heartbeat_interval
        self.check_interval = check_interval
        self.timeout = timeout
        self._clock = clock
        self._tasks: Dict[Connection, asyncio.Task] = {}

    def watch(self, connection: Connection):
        if connection in self._tasks:
            return
        self._tasks[connection] = asyncio.create_task(self._run(connection))

    def unwatch(self, connection: Connection) -> bool:
        task = self._tasks.pop(connection, None)
        if task is None:
            return False
        # The eviction itself runs inside this task; let it finish on its own
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def unwatch_all(self):
        for connection in list(self._tasks):
            self.unwatch(connection)

    def is_watching(self, connection: Connection) -> bool:
        return connection in self._tasks

    def is_expired(self, connection: Connection, now: Optional[float] = None) -> bool:
        info = self._registry.get(connection)
        if not info:
            return False
        now = self._clock() if now is None else now
        return now - info.last_activity_at > self.timeout

    async def probe(self, connection: Connection):
        if not connection.is_open:
            return
        try:
            await asyncio.wait_for(connection.ping(), self.send_timeout)
        except Exception as e:
            # A dead or stalled transport shows up as a timeout later
            logger.debug(f"Heartbeat probe failed: {e!r}")

    async def _run(self, connection: Connection):
        last_probe = self._clock()
        try:
            while True:
                await asyncio.sleep(self.check_interval)
                now = self._clock()
                if self.is_expired(connection, now):
                    info = self._registry.get(connection)
                    logger.info(f"Connection {info.display_id if info else 'unknown'} timed out after {self.timeout}s of inactivity")
                    await self._on_timeout(connection)
                    return
                if now - last_probe >= self.heartbeat_interval:
                    await self._on_probe(connection)
                    last_probe = now
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Liveness watch failed: {e}", exc_info=True)
        finally:
            if self._tasks.get(connection) is asyncio.current_task():
                del self._tasks[connection]
