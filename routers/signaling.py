from fastapi import APIRouter, HTTPException, Request
from schemas.signaling import CandidateRequest, DescriptionRequest, MailboxResponse
import redis
from logging_config import get_logger

logger = get_logger(__name__)

signaling_router = APIRouter(prefix="/signaling", tags=["signaling"])

# Store-and-forward path for clients that poll instead of keeping the WebSocket open.
# Live peers should use WEBRTC_OFFER / WEBRTC_ANSWER / WEBRTC_ICE_CANDIDATE on /ws.


def _store(request: Request, action: str, fn):
    try:
        fn(request.app.state.mailbox)
    except redis.RedisError as e:
        logger.error(f"Mailbox unavailable while storing {action}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Signaling mailbox unavailable")
    return {"message": f"{action} stored"}


@signaling_router.post("/{meeting_id}/offer")
async def post_offer(meeting_id: str, body: DescriptionRequest, request: Request):
    logger.info(f"Offer stored for {body.from_user_id} -> {body.target_user_id} in meeting {meeting_id}")
    return _store(request, "offer", lambda mailbox: mailbox.put_description(
        meeting_id, body.from_user_id, body.target_user_id, "offer", body.sdp))


@signaling_router.post("/{meeting_id}/answer")
async def post_answer(meeting_id: str, body: DescriptionRequest, request: Request):
    logger.info(f"Answer stored for {body.from_user_id} -> {body.target_user_id} in meeting {meeting_id}")
    return _store(request, "answer", lambda mailbox: mailbox.put_description(
        meeting_id, body.from_user_id, body.target_user_id, "answer", body.sdp))


@signaling_router.post("/{meeting_id}/candidate")
async def post_candidate(meeting_id: str, body: CandidateRequest, request: Request):
    logger.debug(f"ICE candidate queued for {body.from_user_id} -> {body.target_user_id} in meeting {meeting_id}")
    return _store(request, "candidate", lambda mailbox: mailbox.add_candidate(
        meeting_id, body.from_user_id, body.target_user_id, body.candidate))


@signaling_router.get("/{meeting_id}/{from_user_id}/{target_user_id}", response_model=MailboxResponse)
async def take_signaling(meeting_id: str, from_user_id: str, target_user_id: str, request: Request):
    """Return and delete whatever `from_user_id` left for `target_user_id`. A second read gets 404."""
    try:
        entry = request.app.state.mailbox.take(meeting_id, from_user_id, target_user_id)
    except redis.RedisError as e:
        logger.error(f"Mailbox unavailable while reading {meeting_id}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Signaling mailbox unavailable")

    if entry is None or entry.is_empty():
        raise HTTPException(status_code=404, detail="No pending signaling")

    return MailboxResponse(
        meeting_id=meeting_id,
        from_user_id=from_user_id,
        target_user_id=target_user_id,
        kind=entry.kind,
        sdp=entry.sdp,
        candidates=entry.candidates,
        created_at=entry.created_at,
    )
