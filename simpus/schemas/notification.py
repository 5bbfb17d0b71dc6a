from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class NotificationOut(BaseModel):
    id: int
    user_id: str
    message: str
    is_read: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SendNotificationRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description='Target user id, or "all" to broadcast')
    message: str = Field(..., min_length=1)
