from pydantic import BaseModel
from typing import Optional


class HealthResponse(BaseModel):
    status: str
    clients: int
    meetings: int
    timestamp: str

class MeetingSummary(BaseModel):
    meeting_id: str
    host: str
    title: Optional[str] = None
    participant_count: int
    created_at: str

class ParticipantDetail(BaseModel):
    user_id: str
    is_host: bool
    audio_muted: bool = False
    video_on: bool = False
    is_recording: bool = False
    webrtc_ready: bool = False

class MeetingDetailResponse(BaseModel):
    meeting_id: str
    host: str
    title: Optional[str] = None
    created_at: str
    participants: list[ParticipantDetail]
