from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from logging_config import get_logger
from registry import ConnectionRegistry

logger = get_logger(__name__)


@dataclass
class Meeting:
    meeting_id: str
    host: str
    # dict keys as an insertion-ordered set, so host failover is deterministic
    participants: Dict[str, None] = field(default_factory=dict)
    title: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def participant_list(self) -> List[str]:
        return list(self.participants)

    def to_dict(self) -> dict:
        return {
            "meetingId": self.meeting_id,
            "host": self.host,
            "title": self.title,
            "participants": self.participant_list(),
            "participantCount": len(self.participants),
            "createdAt": self.created_at,
        }


@dataclass
class LeaveResult:
    meeting_id: str
    display_id: str
    removed: bool = False
    meeting_deleted: bool = False
    new_host: Optional[str] = None


class MeetingDirectory:
    """Meeting membership and host assignment.

    Every membership change also writes the member's ``current_meeting_id`` back
    into the registry, so the two structures cannot drift apart.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._meetings: Dict[str, Meeting] = {}

    def get(self, meeting_id: str) -> Optional[Meeting]:
        return self._meetings.get(meeting_id)

    def all(self) -> List[Meeting]:
        return list(self._meetings.values())

    def create_or_get(self, meeting_id: str, host_display_id: str, title: str = None) -> Meeting:
        meeting = self._meetings.get(meeting_id)
        if meeting:
            return meeting
        self._drop_stale_membership(host_display_id, meeting_id)
        meeting = Meeting(meeting_id=meeting_id, host=host_display_id, title=title)
        meeting.participants[host_display_id] = None
        self._meetings[meeting_id] = meeting
        self._registry.set_meeting(host_display_id, meeting_id)
        logger.info(f"Meeting {meeting_id} created with host {host_display_id}")
        return meeting

    def join(self, meeting_id: str, display_id: str) -> Meeting:
        meeting = self._meetings.get(meeting_id)
        if not meeting:
            # Quick join: the first joiner bootstraps the meeting and hosts it
            return self.create_or_get(meeting_id, display_id)
        self._drop_stale_membership(display_id, meeting_id)
        meeting.participants[display_id] = None
        self._registry.set_meeting(display_id, meeting_id)
        logger.info(f"{display_id} joined meeting {meeting_id} ({len(meeting.participants)} participants)")
        return meeting

    def leave(self, meeting_id: str, display_id: str) -> LeaveResult:
        result = LeaveResult(meeting_id=meeting_id, display_id=display_id)
        meeting = self._meetings.get(meeting_id)
        if not meeting or display_id not in meeting.participants:
            return result

        del meeting.participants[display_id]
        self._registry.set_meeting(display_id, None)
        result.removed = True

        if not meeting.participants:
            del self._meetings[meeting_id]
            result.meeting_deleted = True
            logger.info(f"Meeting {meeting_id} is now empty and removed")
        elif meeting.host == display_id:
            meeting.host = next(iter(meeting.participants))
            result.new_host = meeting.host
            logger.info(f"Host {display_id} left meeting {meeting_id}, new host is {meeting.host}")
        else:
            logger.info(f"{display_id} left meeting {meeting_id}")
        return result

    def end_meeting(self, meeting_id: str, requester_display_id: str) -> bool:
        meeting = self._meetings.get(meeting_id)
        if not meeting or meeting.host != requester_display_id:
            return False
        for display_id in meeting.participants:
            self._registry.set_meeting(display_id, None)
        del self._meetings[meeting_id]
        logger.info(f"Meeting {meeting_id} ended by host {requester_display_id}")
        return True

    def is_host(self, meeting_id: str, display_id: str) -> bool:
        meeting = self._meetings.get(meeting_id)
        return bool(meeting) and meeting.host == display_id

    def clear(self):
        self._meetings.clear()

    def __len__(self):
        return len(self._meetings)

    def __contains__(self, meeting_id):
        return meeting_id in self._meetings

    def _drop_stale_membership(self, display_id: str, target_meeting_id: str):
        found = self._registry.find_by_display_id(display_id)
        if not found:
            return
        current = found[1].current_meeting_id
        if current and current != target_meeting_id:
            logger.warning(f"{display_id} was still in meeting {current}, removing before joining {target_meeting_id}")
            self.leave(current, display_id)
