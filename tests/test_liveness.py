import asyncio

from hub import SignalingHub
from liveness import LivenessMonitor
from registry import ConnectionRegistry
from tests.conftest import ICE, FakeConnection, StalledConnection


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def _noop(connection):
    pass


def test_expiry_is_measured_from_last_activity():
    clock = FakeClock()
    registry = ConnectionRegistry(clock=clock)
    monitor = LivenessMonitor(registry, _noop, timeout=30, clock=clock)
    connection = FakeConnection()
    registry.register(connection)

    assert not monitor.is_expired(connection, now=1029.0)
    assert monitor.is_expired(connection, now=1031.0)

    clock.now = 1030.0
    registry.touch(connection)
    assert not monitor.is_expired(connection, now=1031.0)


async def test_probe_does_not_count_as_activity():
    clock = FakeClock()
    registry = ConnectionRegistry(clock=clock)
    monitor = LivenessMonitor(registry, _noop, clock=clock)
    connection = FakeConnection()
    registry.register(connection)

    clock.now = 1050.0
    await monitor.probe(connection)

    assert connection.pings == 1
    assert registry.get(connection).last_activity_at == 1000.0


async def test_unwatch_cancels_exactly_once():
    registry = ConnectionRegistry()
    monitor = LivenessMonitor(registry, _noop, check_interval=3600)
    connection = FakeConnection()
    registry.register(connection)

    monitor.watch(connection)
    assert monitor.is_watching(connection)

    assert monitor.unwatch(connection)
    assert not monitor.unwatch(connection)
    assert not monitor.is_watching(connection)


async def test_idle_connection_is_evicted_through_teardown():
    hub = SignalingHub(ice_servers=ICE, heartbeat_interval=0.02, check_interval=0.02, timeout=0.1)
    idle, active = FakeConnection(), FakeConnection()
    await hub.connect(idle)
    await hub.connect(active)
    await hub.route(idle, "MEETING_CREATED|room1|U1|Standup")
    await hub.route(active, "USER_JOINED|room1|U2|joining")

    try:
        for _ in range(50):
            await hub.route(active, '{"type": "HEARTBEAT_ACK"}')
            await asyncio.sleep(0.01)

        assert idle.closed[0] == 4000
        assert idle not in hub.registry
        assert not hub.liveness.is_watching(idle)
        assert idle.pings >= 1

        meeting = hub.directory.get("room1")
        assert meeting.host == "U2"
        assert meeting.participant_list() == ["U2"]
        assert "SYSTEM|room1|Server|HOST_CHANGED|U2|U2 is now the host" in active.sent
        assert active in hub.registry
    finally:
        await hub.shutdown()


async def test_disconnect_stops_the_watch(hub):
    connection = FakeConnection()
    await hub.connect(connection)
    assert hub.liveness.is_watching(connection)

    await hub.disconnect(connection)

    assert not hub.liveness.is_watching(connection)


async def test_stalled_peer_does_not_freeze_the_hub():
    hub = SignalingHub(ice_servers=ICE, heartbeat_interval=3600, check_interval=0.02, timeout=0.3, send_timeout=0.05)
    host, guest, stuck = FakeConnection(), FakeConnection(), StalledConnection()
    for connection in (host, guest, stuck):
        await hub.connect(connection)
    await hub.route(host, "MEETING_CREATED|room1|A|Standup")
    await hub.route(guest, "USER_JOINED|room1|B|joining")
    await hub.route(stuck, "USER_JOINED|room1|S|joining")
    stuck.stalled = True

    try:
        await asyncio.wait_for(hub.route(host, "CHAT|room1|A|hi"), 1)
        assert guest.sent[-1] == "CHAT|room1|A|hi"

        await asyncio.wait_for(hub.route(guest, "PING|room1|B|ping"), 1)
        assert guest.sent[-1].startswith("PONG|room1|Server|")

        for _ in range(100):
            if stuck not in hub.registry:
                break
            await hub.route(host, '{"type": "HEARTBEAT_ACK"}')
            await hub.route(guest, '{"type": "HEARTBEAT_ACK"}')
            await asyncio.sleep(0.02)

        assert stuck not in hub.registry
        assert stuck.closed[0] == 4000
        assert hub.directory.get("room1").participant_list() == ["A", "B"]
    finally:
        await hub.shutdown()


async def test_heartbeat_runs_through_the_hub(hub):
    connection = FakeConnection()
    await hub.connect(connection)

    await hub.heartbeat(connection)
    assert connection.pings == 1

    await hub.disconnect(connection)
    await hub.heartbeat(connection)
    assert connection.pings == 1


async def test_monitor_sends_heartbeats_through_the_callback():
    registry = ConnectionRegistry()
    probed = []

    async def on_probe(connection):
        probed.append(connection)

    monitor = LivenessMonitor(registry, _noop, on_probe=on_probe, heartbeat_interval=0.01, check_interval=0.01, timeout=3600)
    connection = FakeConnection()
    registry.register(connection)
    monitor.watch(connection)
    try:
        for _ in range(50):
            if probed:
                break
            await asyncio.sleep(0.01)
    finally:
        monitor.unwatch_all()

    assert probed and probed[0] is connection
    assert connection.pings == 0
