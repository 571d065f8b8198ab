import itertools
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, Optional, Protocol, Tuple

from constants import SERVER_SENDER
from logging_config import get_logger

logger = get_logger(__name__)


class Connection(Protocol):
    """Transport seam. The core never touches sockets directly."""

    @property
    def is_open(self) -> bool: ...

    @property
    def remote_address(self) -> str: ...

    async def send(self, message: str) -> None: ...

    async def ping(self) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass
class ConnectionInfo:
    connection_id: str
    display_id: str
    remote_address: str = "unknown"
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    current_meeting_id: Optional[str] = None
    audio_muted: bool = False
    video_on: bool = False
    is_recording: bool = False
    webrtc_ready: bool = False
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())
    last_activity_at: float = 0.0


class ConnectionRegistry:
    """Owns every live connection's session metadata."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._connections: Dict[Connection, ConnectionInfo] = {}
        self._display_ids = itertools.count(1)

    def register(self, connection: Connection, device_id: str = None, device_name: str = None) -> str:
        display_id = f"User-{next(self._display_ids)}"
        # Skip counter values a live connection has already claimed by name
        while self.find_by_display_id(display_id):
            display_id = f"User-{next(self._display_ids)}"
        info = ConnectionInfo(
            connection_id=uuid.uuid4().hex,
            display_id=display_id,
            remote_address=getattr(connection, "remote_address", "unknown"),
            device_id=device_id,
            device_name=device_name,
            last_activity_at=self._clock(),
        )
        self._connections[connection] = info
        logger.debug(f"Registered connection {info.connection_id} as {display_id} (live: {len(self._connections)})")
        return display_id

    def unregister(self, connection: Connection) -> Optional[ConnectionInfo]:
        # No cascade into meetings: the hub drives the directory leave first
        info = self._connections.pop(connection, None)
        if info:
            logger.debug(f"Unregistered connection {info.connection_id} ({info.display_id})")
        return info

    def get(self, connection: Connection) -> Optional[ConnectionInfo]:
        return self._connections.get(connection)

    def touch(self, connection: Connection):
        info = self._connections.get(connection)
        if info:
            info.last_activity_at = self._clock()

    def all(self) -> Iterator[Tuple[Connection, ConnectionInfo]]:
        # Snapshot so handlers may unregister while iterating
        return iter(list(self._connections.items()))

    def find_by_display_id(self, display_id: str) -> Optional[Tuple[Connection, ConnectionInfo]]:
        for connection, info in self._connections.items():
            if info.display_id == display_id:
                return connection, info
        return None

    def rename(self, connection: Connection, display_id: str) -> bool:
        """Claim a client-chosen display id. Refused while in a meeting and for reserved or taken names."""
        info = self._connections.get(connection)
        if not info or not display_id or info.display_id == display_id:
            return False
        if info.current_meeting_id is not None:
            return False
        if display_id == SERVER_SENDER:
            logger.debug(f"Display id {display_id} is reserved, keeping {info.display_id}")
            return False
        if self.find_by_display_id(display_id):
            logger.debug(f"Display id {display_id} already taken, keeping {info.display_id}")
            return False
        logger.info(f"Connection {info.connection_id} renamed {info.display_id} -> {display_id}")
        info.display_id = display_id
        return True

    def set_meeting(self, display_id: str, meeting_id: Optional[str]):
        found = self.find_by_display_id(display_id)
        if found:
            found[1].current_meeting_id = meeting_id

    def clear(self):
        self._connections.clear()

    def __len__(self):
        return len(self._connections)

    def __contains__(self, connection):
        return connection in self._connections
