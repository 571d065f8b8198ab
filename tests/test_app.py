from unittest.mock import MagicMock

import pytest
import redis
from fastapi.testclient import TestClient

from app import app
from relay import InMemoryMailbox


@pytest.fixture
def client():
    app.state.mailbox = InMemoryMailbox()
    with TestClient(app) as test_client:
        yield test_client


def _welcome(ws):
    return [ws.receive_json() for _ in range(4)]


def test_websocket_meeting_flow(client):
    with client.websocket_connect("/ws?deviceId=dev-1&deviceName=Laptop") as ws1:
        welcome = _welcome(ws1)
        assert [m["type"] for m in welcome] == ["CONNECTION_SUCCESS", "ICE_SERVERS", "NETWORK_INFO", "MEETING_LIST"]

        ws1.send_text("MEETING_CREATED|room1|U1|Standup")
        ws1.send_text("PING|room1|U1|sync")
        assert ws1.receive_text().startswith("PONG|room1|Server|")

        with client.websocket_connect("/ws") as ws2:
            welcome = _welcome(ws2)
            second_id = welcome[0]["data"]["userId"]
            assert [m["meetingId"] for m in welcome[3]["data"]] == ["room1"]
            assert ws1.receive_text() == f"SYSTEM|global|Server|USER_CONNECTED|{second_id}"

            ws2.send_text("USER_JOINED|room1|U2|joining")
            listing = ws2.receive_json()
            assert listing["type"] == "PARTICIPANT_LIST"
            assert [p["userId"] for p in listing["data"]["participants"]] == ["U1", "U2"]
            assert ws1.receive_text() == "USER_JOINED|room1|U2|joining"

            health = client.get("/health").json()
            assert (health["clients"], health["meetings"]) == (2, 1)

            detail = client.get("/meetings/room1").json()
            assert detail["host"] == "U1"
            assert [p["user_id"] for p in detail["participants"]] == ["U1", "U2"]

        assert ws1.receive_text() == "USER_LEFT|room1|U2|left the meeting"
        assert ws1.receive_text() == "SYSTEM|global|Server|USER_DISCONNECTED|U2"


def test_non_host_control_is_rejected_over_websocket(client):
    with client.websocket_connect("/ws") as host, client.websocket_connect("/ws") as guest:
        _welcome(host)
        _welcome(guest)
        host.receive_text()  # guest's USER_CONNECTED

        host.send_text("MEETING_CREATED|room9|H|Planning")
        host.send_text("PING|room9|H|sync")
        assert host.receive_text().startswith("PONG|")
        assert guest.receive_text() == "MEETING_CREATED|room9|H|Planning"

        guest.send_text("USER_JOINED|room9|G|hi")
        guest.receive_json()
        assert host.receive_text() == "USER_JOINED|room9|G|hi"

        guest.send_text("AUDIO_CONTROL|room9|G|MUTE_ALL")
        assert guest.receive_text() == "ERROR|room9|Server|NOT_HOST|Only the host can use AUDIO_CONTROL"


def test_unknown_meeting_is_404(client):
    assert client.get("/meetings/missing").status_code == 404
    assert client.get("/meetings").json() == []


def test_ice_servers_endpoint(client):
    body = client.get("/ice-servers").json()
    assert body["iceServers"]


def test_mailbox_round_trip(client):
    offer = {"fromUserId": "U1", "targetUserId": "U2", "sdp": "v=0"}
    assert client.post("/signaling/room1/offer", json=offer).status_code == 200
    candidate = {"fromUserId": "U1", "targetUserId": "U2", "candidate": {"candidate": "c1", "sdpMid": "0"}}
    assert client.post("/signaling/room1/candidate", json=candidate).status_code == 200

    response = client.get("/signaling/room1/U1/U2")
    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "offer"
    assert body["sdp"] == "v=0"
    assert body["candidates"] == [{"candidate": "c1", "sdpMid": "0"}]

    assert client.get("/signaling/room1/U1/U2").status_code == 404


def test_answer_replaces_pending_offer(client):
    client.post("/signaling/room1/offer", json={"fromUserId": "U1", "targetUserId": "U2", "sdp": "old"})
    client.post("/signaling/room1/answer", json={"fromUserId": "U1", "targetUserId": "U2", "sdp": "new"})

    body = client.get("/signaling/room1/U1/U2").json()
    assert (body["kind"], body["sdp"]) == ("answer", "new")


def test_mailbox_outage_is_503(client):
    broken = MagicMock()
    broken.put_description.side_effect = redis.ConnectionError("down")
    broken.take.side_effect = redis.ConnectionError("down")
    app.state.mailbox = broken

    offer = {"fromUserId": "U1", "targetUserId": "U2", "sdp": "v=0"}
    assert client.post("/signaling/room1/offer", json=offer).status_code == 503
    assert client.get("/signaling/room1/U1/U2").status_code == 503
