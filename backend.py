import redis
import json
from datetime import datetime
from typing import Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, MAILBOX_TTL_SECONDS
from redis_keys import REDIS_SIGNAL_DESCRIPTION_KEY, REDIS_SIGNAL_CANDIDATES_KEY
from relay import MailboxEntry
from logging_config import get_logger

logger = get_logger(__name__)


class RedisMailbox:
    """Signaling mailbox kept in Redis so polling clients survive a worker restart."""

    def __init__(self, redis_client: redis.Redis = None, ttl: int = MAILBOX_TTL_SECONDS):
        self.ttl = ttl
        if redis_client is not None:
            self.redis_client = redis_client
            return
        logger.info(f"Initializing RedisMailbox with connection to {REDIS_HOST}:{REDIS_PORT}")
        try:
            self.redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
            # Test connection
            self.redis_client.ping()
            logger.info(f"Redis mailbox connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    def _keys(self, meeting_id: str, from_id: str, to_id: str):
        fields = {"meeting_id": meeting_id, "from_id": from_id, "to_id": to_id}
        return REDIS_SIGNAL_DESCRIPTION_KEY.format(**fields), REDIS_SIGNAL_CANDIDATES_KEY.format(**fields)

    def put_description(self, meeting_id: str, from_id: str, to_id: str, kind: str, sdp: str):
        sdp_key, _ = self._keys(meeting_id, from_id, to_id)
        value = json.dumps({"kind": kind, "sdp": sdp, "created_at": datetime.now().isoformat()})
        # SET overwrites any pending offer/answer for the same ordered pair
        self.redis_client.set(sdp_key, value, ex=self.ttl or None)
        logger.debug(f"Stored {kind} for {from_id} -> {to_id} in meeting {meeting_id}")

    def add_candidate(self, meeting_id: str, from_id: str, to_id: str, candidate: dict):
        _, ice_key = self._keys(meeting_id, from_id, to_id)
        queued = self.redis_client.rpush(ice_key, json.dumps(candidate))
        if self.ttl:
            self.redis_client.expire(ice_key, self.ttl)
        logger.debug(f"Queued ICE candidate #{queued} for {from_id} -> {to_id} in meeting {meeting_id}")

    def take(self, meeting_id: str, from_id: str, to_id: str) -> Optional[MailboxEntry]:
        sdp_key, ice_key = self._keys(meeting_id, from_id, to_id)
        # Read and delete in one MULTI so two pollers can't both consume the entry
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.get(sdp_key)
        pipe.lrange(ice_key, 0, -1)
        pipe.delete(sdp_key, ice_key)
        description, candidates, _ = pipe.execute()

        if not description and not candidates:
            logger.debug(f"No pending signaling for {from_id} -> {to_id} in meeting {meeting_id}")
            return None

        entry = MailboxEntry()
        if description:
            try:
                stored = json.loads(description)
                entry.kind = stored.get("kind")
                entry.sdp = stored.get("sdp")
                entry.created_at = stored.get("created_at", entry.created_at)
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Discarding unreadable description stored at {sdp_key}")
        for item in candidates or []:
            try:
                entry.candidates.append(json.loads(item))
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Discarding unreadable ICE candidate stored at {ice_key}")
        logger.debug(f"Consumed signaling for {from_id} -> {to_id} in meeting {meeting_id}")
        return entry
