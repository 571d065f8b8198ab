import asyncio
import json
from typing import List, Optional, Union

from constants import SEND_TIMEOUT_SECONDS
from logging_config import get_logger
from registry import Connection, ConnectionRegistry

logger = get_logger(__name__)

Message = Union[str, dict]


def encode(message: Message) -> str:
    if isinstance(message, dict):
        return json.dumps(message)
    return message


class BroadcastEngine:
    """Fan-out primitives. Delivery is best-effort and isolated per recipient.

    Every write is bounded by ``send_timeout``; a recipient that stops reading
    counts as a failed send instead of holding up the caller.
    """

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self._registry = registry
        self.send_timeout = send_timeout

    async def send(self, connection: Connection, message: Message) -> bool:
        if not connection.is_open:
            return False
        try:
            await self._bounded_send(connection, encode(message))
            return True
        except Exception as e:
            logger.warning(f"Error sending to connection {self._describe(connection)}: {e!r}")
            return False

    async def broadcast_global(self, message: Message, exclude: Optional[Connection] = None) -> int:
        recipients = [conn for conn, _ in self._registry.all() if conn is not exclude]
        sent = await self._fan_out(recipients, encode(message))
        logger.debug(f"Global broadcast: sent to {sent} clients")
        return sent

    async def broadcast_to_meeting(self, message: Message, meeting_id: str, exclude: Optional[Connection] = None) -> int:
        recipients = [
            conn for conn, info in self._registry.all()
            if info.current_meeting_id == meeting_id and conn is not exclude
        ]
        if not recipients:
            return 0
        sent = await self._fan_out(recipients, encode(message))
        logger.debug(f"Broadcast to meeting {meeting_id}: sent to {sent} clients")
        return sent

    async def send_direct(self, target_display_id: str, message: Message) -> bool:
        found = self._registry.find_by_display_id(target_display_id)
        if not found:
            logger.debug(f"Direct send to {target_display_id} skipped: not connected")
            return False
        return await self.send(found[0], message)

    async def _bounded_send(self, connection: Connection, payload: str):
        await asyncio.wait_for(connection.send(payload), self.send_timeout)

    async def _fan_out(self, recipients: List[Connection], payload: str) -> int:
        open_recipients = [conn for conn in recipients if conn.is_open]
        if not open_recipients:
            return 0
        results = await asyncio.gather(
            *(self._bounded_send(conn, payload) for conn in open_recipients),
            return_exceptions=True,
        )
        failed = 0
        for conn, result in zip(open_recipients, results):
            if isinstance(result, Exception):
                failed += 1
                logger.warning(f"Error sending to connection {self._describe(conn)}: {result!r}")
        return len(open_recipients) - failed

    def _describe(self, connection: Connection) -> str:
        info = self._registry.get(connection)
        return info.display_id if info else "unregistered"
