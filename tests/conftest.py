import asyncio
import json
import itertools

import pytest

from hub import SignalingHub

ICE = [{"urls": "stun:stun.example.org:3478"}]
_addresses = itertools.count(1)


class FakeConnection:
    """In-memory stand-in for a transport session."""

    def __init__(self, fail_sends=False):
        self.sent = []
        self.pings = 0
        self.closed = None
        self.is_open = True
        self.fail_sends = fail_sends
        self.remote_address = f"10.0.0.{next(_addresses)}:50000"

    async def send(self, message):
        if self.fail_sends:
            raise ConnectionResetError("peer went away")
        self.sent.append(message)

    async def ping(self):
        self.pings += 1

    async def close(self, code=1000, reason=""):
        self.closed = (code, reason)
        self.is_open = False

    def json_messages(self, msg_type=None):
        found = []
        for raw in self.sent:
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(decoded, dict) and (msg_type is None or decoded.get("type") == msg_type):
                found.append(decoded)
        return found

    def text_messages(self, prefix=""):
        return [raw for raw in self.sent if not raw.startswith("{") and raw.startswith(prefix)]


class StalledConnection(FakeConnection):
    """A peer that stops reading: once ``stalled`` is set, writes never complete."""

    def __init__(self):
        super().__init__()
        self.stalled = False

    async def send(self, message):
        if self.stalled:
            await asyncio.Event().wait()
        await super().send(message)

    async def ping(self):
        if self.stalled:
            await asyncio.Event().wait()
        await super().ping()


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
async def hub():
    signaling_hub = SignalingHub(
        ice_servers=ICE,
        server_info={"host": "relay.test", "port": 8887},
        heartbeat_interval=3600,
        check_interval=3600,
        timeout=3600,
    )
    yield signaling_hub
    await signaling_hub.shutdown()


@pytest.fixture
def join(hub):
    """Connect a fake peer, claim a display id and clear the welcome traffic."""

    async def _join(display_id=None, meeting_id=None, create=False):
        connection = FakeConnection()
        await hub.connect(connection)
        if display_id and meeting_id:
            msg_type = "MEETING_CREATED" if create else "USER_JOINED"
            await hub.route(connection, f"{msg_type}|{meeting_id}|{display_id}|hello")
        elif display_id:
            await hub.route(connection, f"PING|global|{display_id}|claim")
        connection.sent.clear()
        return connection

    return _join
