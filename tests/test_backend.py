import json
from unittest.mock import ANY, MagicMock

import pytest

from backend import RedisMailbox


@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def mailbox(redis_client):
    return RedisMailbox(redis_client=redis_client, ttl=120)


def test_description_overwrites_with_ttl(mailbox, redis_client):
    mailbox.put_description("m1", "U1", "U2", "offer", "v=0")

    redis_client.set.assert_called_once_with("signal:sdp:m1:U1:U2", ANY, ex=120)
    stored = json.loads(redis_client.set.call_args.args[1])
    assert stored["kind"] == "offer"
    assert stored["sdp"] == "v=0"


def test_candidates_are_appended(mailbox, redis_client):
    mailbox.add_candidate("m1", "U1", "U2", {"candidate": "c1"})

    redis_client.rpush.assert_called_once_with("signal:ice:m1:U1:U2", json.dumps({"candidate": "c1"}))
    redis_client.expire.assert_called_once_with("signal:ice:m1:U1:U2", 120)


def test_take_reads_and_deletes_atomically(mailbox, redis_client):
    pipe = redis_client.pipeline.return_value
    pipe.execute.return_value = [
        json.dumps({"kind": "answer", "sdp": "v=0", "created_at": "2025-01-01T00:00:00"}),
        [json.dumps({"candidate": "c1"}), json.dumps({"candidate": "c2"})],
        2,
    ]

    entry = mailbox.take("m1", "U2", "U1")

    redis_client.pipeline.assert_called_once_with(transaction=True)
    pipe.delete.assert_called_once_with("signal:sdp:m1:U2:U1", "signal:ice:m1:U2:U1")
    assert entry.kind == "answer"
    assert entry.created_at == "2025-01-01T00:00:00"
    assert [c["candidate"] for c in entry.candidates] == ["c1", "c2"]


def test_take_on_empty_pair_returns_none(mailbox, redis_client):
    redis_client.pipeline.return_value.execute.return_value = [None, [], 0]

    assert mailbox.take("m1", "U1", "U2") is None
