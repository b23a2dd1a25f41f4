from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

from covenant.schemas.profile import ProfileResponse


class CandidateItem(BaseModel):
    profile: ProfileResponse
    score: int


class ScoreResponse(BaseModel):
    user_a_id: UUID
    user_b_id: UUID
    score: int
    breakdown: dict[str, int]


class MatchResponse(BaseModel):
    id: UUID
    user_id: UUID
    matched_user_id: UUID
    score: int
    status: str  # new/interested/passed/connected
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MatchListItem(MatchResponse):
    matched_user_name: Optional[str] = None


class PassRequest(BaseModel):
    viewer_id: UUID
    candidate_id: UUID


class ProfileViewRequest(BaseModel):
    viewer_id: UUID
    viewed_id: UUID


class ProfileViewResponse(BaseModel):
    id: UUID
    viewer_id: UUID
    viewed_id: UUID
    viewed_at: datetime

    model_config = {"from_attributes": True}


class BlockRequest(BaseModel):
    blocker_id: UUID
    blocked_id: UUID


class BlockResponse(BaseModel):
    id: UUID
    blocker_id: UUID
    blocked_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class ReportRequest(BaseModel):
    reporter_id: UUID
    reported_id: UUID
    reason: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)


class ReportResponse(BaseModel):
    id: UUID
    reporter_id: UUID
    reported_id: UUID
    reason: str
    description: Optional[str] = None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Interests ─────────────────────────────────────────────────────────────────

class InterestCreate(BaseModel):
    sender_id: UUID
    receiver_id: UUID
    message: Optional[str] = None


class InterestRespond(BaseModel):
    accept: bool
    responder_id: Optional[UUID] = None


class InterestResponse(BaseModel):
    id: UUID
    sender_id: UUID
    receiver_id: UUID
    status: str  # pending/accepted/rejected
    message: Optional[str] = None
    sent_at: datetime
    responded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InterestResolution(BaseModel):
    interest: InterestResponse
    conversation_id: Optional[UUID] = None
