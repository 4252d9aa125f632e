from pydantic import BaseModel, Field
from datetime import datetime


class NotificationResponse(BaseModel):
    id: int
    kind: str
    title: str
    message: str
    auction_id: int | None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UnreadCountResponse(BaseModel):
    count: int


class DeviceTokenRequest(BaseModel):
    token: str = Field(pattern=r"^Expo(nent)?PushToken\[.+\]$")


class MarkAllReadResponse(BaseModel):
    updated: int
