from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserRegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)


class UserResponse(BaseModel):
    user_id: UUID
    username: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserRegisterResponse(UserResponse):
    api_key: str
