from pydantic import BaseModel, Field
from typing import Optional


class DescriptionRequest(BaseModel):
    from_user_id: str = Field(alias="fromUserId")
    target_user_id: str = Field(alias="targetUserId")
    sdp: str

class CandidateRequest(BaseModel):
    from_user_id: str = Field(alias="fromUserId")
    target_user_id: str = Field(alias="targetUserId")
    candidate: dict

class MailboxResponse(BaseModel):
    meeting_id: str
    from_user_id: str
    target_user_id: str
    kind: Optional[str] = None
    sdp: Optional[str] = None
    candidates: list[dict] = []
    created_at: str
