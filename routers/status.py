from fastapi import APIRouter, HTTPException, Request
from schemas.status import HealthResponse, MeetingSummary, MeetingDetailResponse, ParticipantDetail
from datetime import datetime
from logging_config import get_logger

logger = get_logger(__name__)

status_router = APIRouter(tags=["status"])


@status_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    counts = request.app.state.hub.snapshot()
    return HealthResponse(
        status="ok",
        clients=counts["clients"],
        meetings=counts["meetings"],
        timestamp=datetime.now().isoformat(),
    )


@status_router.get("/meetings", response_model=list[MeetingSummary])
async def list_meetings(request: Request):
    hub = request.app.state.hub
    return [
        MeetingSummary(
            meeting_id=meeting.meeting_id,
            host=meeting.host,
            title=meeting.title,
            participant_count=len(meeting.participants),
            created_at=meeting.created_at,
        )
        for meeting in hub.directory.all()
    ]


@status_router.get("/meetings/{meeting_id}", response_model=MeetingDetailResponse)
async def get_meeting(meeting_id: str, request: Request):
    """
    Participant detail for one meeting.

    Returns:
    - meeting_id, host, title, created_at
    - participants: user id, host flag and current media flags
    """
    hub = request.app.state.hub
    meeting = hub.directory.get(meeting_id)
    if not meeting:
        logger.debug(f"Meeting details failed: Meeting {meeting_id} not found")
        raise HTTPException(status_code=404, detail="Meeting not found")

    participants = [
        ParticipantDetail(
            user_id=entry["userId"],
            is_host=entry["isHost"],
            audio_muted=entry.get("audioMuted", False),
            video_on=entry.get("videoOn", False),
            is_recording=entry.get("isRecording", False),
            webrtc_ready=entry.get("webrtcReady", False),
        )
        for entry in hub.snapshot(meeting_id)["participants"]
    ]
    return MeetingDetailResponse(
        meeting_id=meeting.meeting_id,
        host=meeting.host,
        title=meeting.title,
        created_at=meeting.created_at,
        participants=participants,
    )


@status_router.get("/ice-servers")
async def ice_servers(request: Request):
    return {"iceServers": request.app.state.hub.router.ice_servers}
