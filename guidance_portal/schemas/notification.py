from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum

class NotificationType(str, Enum):
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    APPOINTMENT_STATUS = "appointment_status"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_REMINDER = "appointment_reminder"
    ANONYMOUS_REPLY = "anonymous_reply"
    NEW_STUDENT = "new_student"
    FEEDBACK_RESPONSE = "feedback_response"
    INQUIRY_RESPONSE = "inquiry_response"

class NotificationCreate(BaseModel):
    userId: str  # canonical account uid, never a raw student identifier
    type: NotificationType
    title: str
    message: str
    appointmentId: Optional[str] = None
    postId: Optional[str] = None
    requiresAcknowledgment: bool = False

class NotificationResponse(BaseModel):
    id: str
    userId: str
    type: NotificationType
    title: str
    message: str
    appointmentId: Optional[str] = None
    postId: Optional[str] = None
    unread: bool = True
    requiresAcknowledgment: bool = False
    acknowledged: bool = False
    acknowledgedAt: Optional[datetime] = None
    createdAt: datetime
    
    class Config:
        populate_by_name = True
        json_encoders = {
            datetime: lambda dt: dt.isoformat()
        }
