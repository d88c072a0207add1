from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BattleCreateRequest(BaseModel):
    name: str
    max_participants: int = 10
    double_submissions: bool = False
    visibility: str = "private"
    theme: str
    description: Optional[str] = None
    submission_deadline: datetime
    voting_deadline: datetime


class BattleJoinRequest(BaseModel):
    invite_code: str = Field(min_length=1, max_length=16)


class RoundCreateRequest(BaseModel):
    theme: str
    description: Optional[str] = None
    submission_deadline: datetime
    voting_deadline: datetime


class RoundUpdateRequest(BaseModel):
    theme: Optional[str] = None
    description: Optional[str] = None
    submission_deadline: Optional[datetime] = None
    voting_deadline: Optional[datetime] = None


class SubmissionCreateRequest(BaseModel):
    round_id: UUID
    track_url: str


class SubmissionUpdateRequest(BaseModel):
    track_url: str


class VoteRequest(BaseModel):
    submission_id: UUID
