import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from broadcast import BroadcastEngine
from logging_config import get_logger

logger = get_logger(__name__)

SIGNAL_TYPES = ("WEBRTC_OFFER", "WEBRTC_ANSWER", "WEBRTC_ICE_CANDIDATE")

# Routing fields that are rewritten rather than forwarded
_ENVELOPE_FIELDS = ("type", "fromUserId", "targetUserId")


class SignalingRelay:
    """Live offer/answer/ICE forwarding between two connected peers. No queueing."""

    def __init__(self, broadcast: BroadcastEngine):
        self._broadcast = broadcast

    async def relay(self, signal_type: str, from_display_id: str, target_display_id: str, payload: dict) -> bool:
        if signal_type not in SIGNAL_TYPES:
            raise ValueError(f"Not a signaling message type: {signal_type}")
        wrapped = {"type": signal_type, "fromUserId": from_display_id}
        wrapped.update({k: v for k, v in payload.items() if k not in _ENVELOPE_FIELDS})
        delivered = await self._broadcast.send_direct(target_display_id, wrapped)
        if delivered:
            logger.debug(f"Relayed {signal_type} from {from_display_id} to {target_display_id}")
        else:
            logger.warning(f"Could not relay {signal_type} from {from_display_id}: {target_display_id} is not connected")
        return delivered


@dataclass
class MailboxEntry:
    """Pending signaling state for one ordered (from, to) pair inside a meeting."""
    kind: Optional[str] = None  # "offer" | "answer"
    sdp: Optional[str] = None
    candidates: List[dict] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def is_empty(self) -> bool:
        return self.sdp is None and not self.candidates

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "sdp": self.sdp,
            "candidates": list(self.candidates),
            "createdAt": self.created_at,
        }


class Mailbox(Protocol):
    def put_description(self, meeting_id: str, from_id: str, to_id: str, kind: str, sdp: str) -> None: ...

    def add_candidate(self, meeting_id: str, from_id: str, to_id: str, candidate: dict) -> None: ...

    def take(self, meeting_id: str, from_id: str, to_id: str) -> Optional[MailboxEntry]: ...


class InMemoryMailbox:
    """Store-and-forward fallback for clients that poll instead of holding a live socket.

    A new offer/answer overwrites the pending one; candidates queue up. ``take``
    hands the whole entry to a single reader and forgets it.
    """

    def __init__(self, ttl_seconds: int = 120, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str, str], Tuple[float, MailboxEntry]] = {}

    def put_description(self, meeting_id: str, from_id: str, to_id: str, kind: str, sdp: str):
        entry = self._entry((meeting_id, from_id, to_id))
        if entry.sdp is not None:
            logger.debug(f"Overwriting pending {entry.kind} for {from_id} -> {to_id} in {meeting_id}")
        entry.kind = kind
        entry.sdp = sdp

    def add_candidate(self, meeting_id: str, from_id: str, to_id: str, candidate: dict):
        self._entry((meeting_id, from_id, to_id)).candidates.append(candidate)

    def take(self, meeting_id: str, from_id: str, to_id: str) -> Optional[MailboxEntry]:
        self._expire()
        stored = self._entries.pop((meeting_id, from_id, to_id), None)
        if not stored:
            return None
        return stored[1]

    def _entry(self, key) -> MailboxEntry:
        self._expire()
        stored = self._entries.get(key)
        if stored:
            return stored[1]
        entry = MailboxEntry()
        self._entries[key] = (self._clock(), entry)
        return entry

    def _expire(self):
        if not self._ttl:
            return
        now = self._clock()
        stale = [key for key, (stored_at, _) in self._entries.items() if now - stored_at > self._ttl]
        for key in stale:
            del self._entries[key]
            logger.debug(f"Mailbox entry {key} expired")

    def __len__(self):
        return len(self._entries)
